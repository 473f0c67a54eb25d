"""
Core module for the challenge solver.

Configuration, logging, the error taxonomy, the poll-driven
orchestrator and the request/response bridge to the background service
that performs all network I/O.

Submodules:
    config: Application settings (``SolverSettings``) via Pydantic.
    orchestrator: ``ChallengeOrchestrator`` poll loop, ``SolveState`` and
        ``PageState``.
    bridge: ``CrossContextBridge`` and ``BackgroundService``.
    notifier: Deduplicated log/webhook notifications.
    errors: ``ErrorType`` and the exception hierarchy.
    monitoring: Rich session summary for the CLI.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON read/write helpers, content digests.
"""
