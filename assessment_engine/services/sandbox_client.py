"""
Adapter for the external code-execution sandbox (Judge0-compatible API).

The client converts (source, language, stdin, limits) into a normalized
``ExecutionResult``. Transport failures surface as ``SandboxUnavailableError``
and per-call timeouts as ``TestCaseTimeoutError`` so the grading pipeline can
isolate them. ``DegradedExecutor`` is the clearly-flagged stand-in used while
the sandbox is unreachable.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..errors import SandboxUnavailableError, TestCaseTimeoutError, ValidationError

logger = logging.getLogger(__name__)

# Judge0 language IDs
LANGUAGE_IDS: Dict[str, int] = {
    "python": 71,  # Python 3.8.1
    "javascript": 63,  # Node.js 12.14.0
    "java": 62,  # Java (OpenJDK 13.0.1)
    "cpp": 54,  # C++ (GCC 9.2.0)
    "c": 50,  # C (GCC 9.2.0)
    "typescript": 74,  # TypeScript 3.7.4
    "ruby": 72,  # Ruby 2.7.0
    "go": 60,  # Go 1.13.5
    "rust": 73,  # Rust 1.40.0
    "php": 68,  # PHP 7.4.1
}

# Judge0 status ids
STATUS_IN_QUEUE = 1
STATUS_PROCESSING = 2
STATUS_ACCEPTED = 3
STATUS_TIME_LIMIT_EXCEEDED = 5
STATUS_COMPILATION_ERROR = 6
RUNTIME_ERROR_STATUSES = range(7, 13)

DEGRADED_STATUS = "Sandbox Unavailable"


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str
    stderr: str
    compile_output: str
    status_code: int
    status: str
    time_ms: float
    memory_kb: float
    degraded: bool = False
    token: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status_code == STATUS_ACCEPTED and not self.degraded

    @property
    def is_compile_error(self) -> bool:
        return self.status_code == STATUS_COMPILATION_ERROR

    @property
    def is_runtime_error(self) -> bool:
        return self.status_code in RUNTIME_ERROR_STATUSES

    @property
    def is_time_exceeded(self) -> bool:
        return self.status_code == STATUS_TIME_LIMIT_EXCEEDED

    @property
    def error(self) -> Optional[str]:
        if self.degraded:
            return "Sandbox unavailable: run was not judged"
        if self.status_code > STATUS_ACCEPTED:
            return self.status
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            {
                "is_success": self.is_success,
                "is_compile_error": self.is_compile_error,
                "is_runtime_error": self.is_runtime_error,
                "is_time_exceeded": self.is_time_exceeded,
                "error": self.error,
            }
        )
        return data


class SandboxExecutor(Protocol):
    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: str = "",
        cpu_limit_seconds: Optional[float] = None,
        memory_limit_kb: Optional[int] = None,
    ) -> ExecutionResult:
        ...


def language_id_for(language: str) -> int:
    """Map a language name to its sandbox id, rejecting unknown languages"""
    language_id = LANGUAGE_IDS.get((language or "").lower())
    if language_id is None:
        raise ValidationError(
            f"Unsupported language: {language}. Supported: {', '.join(LANGUAGE_IDS)}"
        )
    return language_id


def supported_languages() -> List[Dict[str, Any]]:
    return [
        {"id": name, "name": name.capitalize(), "language_id": language_id}
        for name, language_id in LANGUAGE_IDS.items()
    ]


def _parse_result(body: Dict[str, Any]) -> ExecutionResult:
    status = body.get("status") or {}
    raw_time = body.get("time")
    try:
        time_ms = float(raw_time) * 1000 if raw_time is not None else 0.0
    except (TypeError, ValueError):
        time_ms = 0.0

    return ExecutionResult(
        stdout=body.get("stdout") or "",
        stderr=body.get("stderr") or "",
        compile_output=body.get("compile_output") or "",
        status_code=int(status.get("id") or 0),
        status=status.get("description") or "Unknown",
        time_ms=round(time_ms, 2),
        memory_kb=float(body.get("memory") or 0),
        token=body.get("token"),
    )


class ExecutionSandboxClient:
    """Thin async client for a Judge0-compatible execution service"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 20.0,
        max_concurrency: int = 8,
        cpu_limit_seconds: float = 5.0,
        memory_limit_kb: int = 256000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_concurrency = max_concurrency
        self._cpu_limit_seconds = cpu_limit_seconds
        self._memory_limit_kb = memory_limit_kb
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["X-Auth-Token"] = self._api_key
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout_seconds,
                limits=httpx.Limits(max_connections=self._max_concurrency),
                transport=self._transport,
            )
        return self._client

    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: str = "",
        cpu_limit_seconds: Optional[float] = None,
        memory_limit_kb: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Run source code once in the sandbox and wait for the verdict.

        Raises:
            ValidationError: unsupported language
            TestCaseTimeoutError: the sandbox did not answer within the HTTP timeout
            SandboxUnavailableError: the sandbox could not be reached or errored
        """
        payload = {
            "source_code": source_code,
            "language_id": language_id_for(language),
            "stdin": stdin or "",
            "cpu_time_limit": cpu_limit_seconds or self._cpu_limit_seconds,
            "memory_limit": memory_limit_kb or self._memory_limit_kb,
        }

        try:
            response = await self._http().post(
                "/submissions",
                params={"base64_encoded": "false", "wait": "true"},
                json=payload,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.warning(f"Sandbox unreachable at {self._base_url}: {e}")
            raise SandboxUnavailableError(f"Sandbox unreachable: {e}") from e
        except httpx.TimeoutException as e:
            raise TestCaseTimeoutError(
                f"Sandbox did not respond within {self._timeout_seconds:.1f}s"
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Sandbox transport error: {e}")
            raise SandboxUnavailableError(f"Sandbox transport error: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"Sandbox API error {response.status_code}: {response.text[:200]}"
            )
            raise SandboxUnavailableError(
                f"Sandbox returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SandboxUnavailableError("Sandbox returned a non-JSON response") from e

        result = _parse_result(body)
        logger.info(
            f"Sandbox run language={language} status={result.status} "
            f"time_ms={result.time_ms} memory_kb={result.memory_kb}"
        )
        return result

    async def check_health(self) -> Dict[str, Any]:
        """Probe the sandbox's /about endpoint"""
        try:
            response = await self._http().get("/about")
        except httpx.HTTPError as e:
            return {"available": False, "error": str(e)}

        if response.status_code != 200:
            return {"available": False, "error": f"HTTP {response.status_code}"}

        data = response.json()
        return {"available": True, "version": data.get("version")}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DegradedExecutor:
    """
    Fallback used while the sandbox is unreachable. It never runs candidate
    code; every result is tagged ``degraded`` so it cannot count as a pass and
    reports can tell it apart from a judged run.
    """

    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: str = "",
        cpu_limit_seconds: Optional[float] = None,
        memory_limit_kb: Optional[int] = None,
    ) -> ExecutionResult:
        language_id_for(language)
        logger.warning(f"[DEGRADED] Recording unjudged {language} run")
        return ExecutionResult(
            stdout="",
            stderr="",
            compile_output="",
            status_code=0,
            status=DEGRADED_STATUS,
            time_ms=0.0,
            memory_kb=0.0,
            degraded=True,
        )
