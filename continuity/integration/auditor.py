# continuity/integration/auditor.py
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from continuity.chain.writer import ActionLog, AppendResult
from continuity.core.exceptions import CriticalWriteError
from continuity.verify.verifier import IntegrityValidator, VerificationResult


class ActionAuditor:
    """Agent-side wrapper: logs routine actions, gates side effects behind critical ones."""

    def __init__(self, log: ActionLog, platform: str):
        self.log = log
        self.platform = platform

    def record(self, type: str, description: str, severity: str = "medium", **fields: Any) -> AppendResult:
        return self.log.append(type, self.platform, description, severity=severity, **fields)

    @contextmanager
    def gate(
        self,
        type: str,
        description: str,
        cost: Any = None,
        proof: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Iterator[AppendResult]:
        """
        Log a critical action before doing it:

            with auditor.gate("purchase", "Buy 1 API credit", cost=1.00):
                wallet.pay(...)

        Raises CriticalWriteError before the body runs if the entry is not durable.
        """
        result = self.log.append_critical(
            type, self.platform, description, cost=cost, proof=proof, metadata=metadata,
        )
        if not result:
            raise CriticalWriteError(f"Failed to log critical action '{type}' ({result.reason}). ABORTING.")
        yield result

    def validate_today(self) -> VerificationResult:
        return IntegrityValidator().validate_file(self.log.stream_path())
