"""Judging collaborator used to adjudicate submissions."""

from dataclasses import dataclass


ACCEPTED = "Accepted"


@dataclass
class JudgeResult:
    verdict: str
    execution_time_ms: int = 0
    memory_used_kb: int = 0

    @property
    def accepted(self) -> bool:
        return self.verdict == ACCEPTED


class Judge:
    """Interface for judges. Implementations raise ``errors.JudgeUnavailable``
    when they cannot produce a verdict."""

    def submit(self, code: str, language: str, problem: dict) -> JudgeResult:
        raise NotImplementedError


class StubJudge(Judge):
    """Accepts any non-empty source. There is no execution sandbox."""

    def submit(self, code: str, language: str, problem: dict) -> JudgeResult:
        if not code or not code.strip():
            return JudgeResult(verdict="Compilation Error")
        return JudgeResult(verdict=ACCEPTED, execution_time_ms=15, memory_used_kb=256)
