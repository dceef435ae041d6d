"""Durable task queue for generating per-occupation career analyses.

Work is a fixed grid: every entity (occupation) in every region gets one
instance of every task definition in the catalog. Instances live in the work
ledger and move `pending -> running -> done | failed`; a worker claims one
instance at a time, renders its template, calls the generation service,
validates the JSON payload and commits the outcome together with the paired
progress record.

Why not Celery / RQ?
~~~~~~~~~~~~~~~~~~~~
The queue is the results database itself. Claim, result upsert and progress
update must share one transaction with the ledger rows they guard, which a
separate broker cannot provide without a second source of truth. Several
worker processes can share one PostgreSQL database (`FOR UPDATE SKIP
LOCKED`); SQLite works for a single machine.
"""
