"""
Script Render Backend - on-demand PDF rendering for time-coded scripts

This package turns a stored script version plus its project and client
metadata into a paginated PDF. It provides:

- A Redis-backed job queue with a bounded, retrying worker pool
- A synchronous in-request fallback (degraded mode) when the broker is down
- Script segmentation into timed blocks and PDF layout with WeasyPrint
- Local or S3 artifact storage
- Best-effort outcome notifications on per-user Redis channels

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - coordinator: Chooses between queueing and in-request rendering
    - job_queue: Broker client (probe, enqueue, status, worker primitives)
    - worker: Job consumer pool and the standalone worker entry point
    - pipeline: Render steps shared by the worker and the fallback path
    - renderer: Script segmentation, HTML building and PDF layout
    - storage: Artifact stores
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn script_render_backend.main:app --reload --host 0.0.0.0 --port 8000

    Run a worker process with:
        python -m script_render_backend.worker
"""
