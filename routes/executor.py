# routes/executor.py
"""Code execution behind a narrow interface.

Real sandboxing (process isolation, resource limits) belongs to an external
service. Anything implementing ``CodeExecutor.execute`` can be plugged in
through the ``get_executor`` dependency; the default ``SimulatedExecutor``
fakes outcomes and resource usage.
"""
from fastapi import HTTPException
from typing import List, Optional
import asyncio
import random
import logging

import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("python", "cpp")

ACCEPTED = "Accepted"
WRONG_ANSWER = "Wrong Answer"
TIME_LIMIT_EXCEEDED = "Time Limit Exceeded"
RUNTIME_ERROR = "Runtime Error"

HIDDEN = "Hidden"


class ExecutionError(Exception):
    """Raised by an executor when the program could not be run."""


def check_language(language: str) -> str:
    language = (language or "").lower()
    if language not in SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail="Unsupported language. Only Python and C++ are supported.")
    return language


class CodeExecutor:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or config.EXECUTION_TIMEOUT_SECONDS

    async def execute(self, code: str, language: str, input: str) -> dict:
        """Run ``code`` on ``input``; returns {output, executionTime (ms), memoryUsed (MB)}."""
        raise NotImplementedError

    async def run(self, code: str, language: str, input: str) -> dict:
        """``execute`` under the executor's timeout, with failures folded into the result."""
        try:
            result = await asyncio.wait_for(self.execute(code, language, input), timeout=self.timeout)
        except asyncio.TimeoutError:
            return {"output": "", "error": TIME_LIMIT_EXCEEDED, "executionTime": int(self.timeout * 1000), "memoryUsed": 0}
        except ExecutionError as e:
            return {"output": "", "error": str(e), "executionTime": 0, "memoryUsed": 0}
        return {"error": None, **result}

    async def run_case(self, code: str, language: str, case: dict) -> dict:
        result = await self.execute(code, language, case.get("input", ""))
        passed = result["output"].strip() == case.get("expected", "").strip()
        return {
            "passed": passed,
            "status": ACCEPTED if passed else WRONG_ANSWER,
            "actual": result["output"],
            "executionTime": result.get("executionTime", 0),
            "memoryUsed": result.get("memoryUsed", 0),
        }

    async def run_test_cases(self, code: str, language: str, test_cases: List[dict], timeout: Optional[float] = None) -> dict:
        limit = min(timeout, self.timeout) if timeout else self.timeout
        results = []
        for number, case in enumerate(test_cases, start=1):
            try:
                outcome = await asyncio.wait_for(self.run_case(code, language, case), timeout=limit)
            except asyncio.TimeoutError:
                outcome = {
                    "passed": False,
                    "status": TIME_LIMIT_EXCEEDED,
                    "actual": "",
                    "executionTime": int(limit * 1000),
                    "memoryUsed": 0,
                }
            except ExecutionError as e:
                logger.warning(f"Execution failed on test case {number}: {e}")
                outcome = {
                    "passed": False,
                    "status": RUNTIME_ERROR,
                    "actual": str(e),
                    "executionTime": 0,
                    "memoryUsed": 0,
                }
            results.append({
                "testCaseNumber": number,
                "input": case.get("input", ""),
                "expected": case.get("expected", ""),
                "isHidden": case.get("isHidden", False),
                **outcome,
            })
        return {"results": results, "summary": summarize(results)}


def summarize(results: List[dict]) -> dict:
    total = len(results)
    passed = sum(1 for r in results if r["passed"])
    if passed == total:
        status = ACCEPTED
    else:
        failures = [r["status"] for r in results if not r["passed"] and r["status"] != WRONG_ANSWER]
        status = failures[0] if failures else WRONG_ANSWER
    return {
        "totalTestCases": total,
        "passedTestCases": passed,
        "failedTestCases": total - passed,
        "status": status,
        "executionTime": round(sum(r["executionTime"] for r in results) / total) if total else 0,
        "memoryUsed": round(sum(r["memoryUsed"] for r in results) / total) if total else 0,
    }


def mask_hidden(results: List[dict]) -> List[dict]:
    masked = []
    for r in results:
        if r.get("isHidden"):
            r = {**r, "input": HIDDEN, "expected": HIDDEN, "actual": HIDDEN}
        masked.append(r)
    return masked


class SimulatedExecutor(CodeExecutor):
    """Stand-in with no real semantics: random verdicts and resource numbers."""

    def __init__(self, pass_rate: float = 0.7, delay: Optional[float] = None, rng: Optional[random.Random] = None, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.pass_rate = pass_rate
        self.delay = config.SIMULATED_EXECUTION_DELAY if delay is None else delay
        self.rng = rng or random.Random()

    async def execute(self, code: str, language: str, input: str) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        label = {"python": "Python", "cpp": "C++"}.get(language, language)
        return {
            "output": f"Output for {label} code:\n{' '.join(input.splitlines())} processed",
            "executionTime": self.rng.randint(0, 999),
            "memoryUsed": self.rng.randint(0, 99),
        }

    async def run_case(self, code: str, language: str, case: dict) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        passed = self.rng.random() < self.pass_rate
        expected = case.get("expected", "")
        return {
            "passed": passed,
            "status": ACCEPTED if passed else WRONG_ANSWER,
            "actual": expected if passed else f"Wrong output: {self.rng.getrandbits(32):08x}",
            "executionTime": self.rng.randint(0, 499),
            "memoryUsed": self.rng.randint(0, 49),
        }


_executor: CodeExecutor = SimulatedExecutor()


def get_executor() -> CodeExecutor:
    return _executor
