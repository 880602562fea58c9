"""
Error taxonomy for the lead pipeline.

ValidationError and PersistenceError abort a submission and reach the caller
(400 / 500). DeliveryError stays inside the fan-out: it is logged and put on
the delivery report, never surfaced to the end user.
"""

import asyncpg

# Driver-level failures translated into PersistenceError at the resolver/recorder boundary
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class LeadPipelineError(Exception):
    status_code = 500


class ValidationError(LeadPipelineError):
    status_code = 400


class PersistenceError(LeadPipelineError):
    status_code = 500


class DeliveryError(LeadPipelineError):
    def __init__(self, sink: str, message: str, http_status: int | None = None):
        super().__init__(f"{sink}: {message}")
        self.sink = sink
        self.message = message
        self.http_status = http_status
