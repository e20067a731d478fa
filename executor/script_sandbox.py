import asyncio
import logging
from typing import Any, Mapping

from jinja2 import StrictUndefined, Undefined
from jinja2.exceptions import SecurityError, TemplateError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from exceptions import ScriptTimeoutError

logger = logging.getLogger("workflow_engine")

DEFAULT_SCRIPT_TIMEOUT_SECONDS = 5.0


class ScriptSandbox:
    """
    Runs `custom_script` steps as Jinja2 expressions (or templates) inside an
    immutable sandbox: no attribute access to internals, no mutation of the
    context, no imports. Evaluation happens on a worker thread and is
    abandoned once the deadline passes.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_SCRIPT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self.env = ImmutableSandboxedEnvironment(undefined=StrictUndefined, autoescape=False)

    def _evaluate(self, script: str, language: str, variables: Mapping[str, Any]) -> Any:
        if language == "template":
            return self.env.from_string(script).render(**variables)
        if language != "expression":
            raise ValueError(f"Unsupported script language: {language}")
        expression = self.env.compile_expression(script, undefined_to_none=False)
        value = expression(**variables)
        if isinstance(value, Undefined):
            # unknown names and blocked attributes
            value._fail_with_undefined_error()
        return value

    async def run(self, script: str, variables: Mapping[str, Any], language: str = "expression", timeout_seconds: float = None) -> Any:
        """
        Evaluates `script` against `variables`. Raises ScriptTimeoutError on
        deadline, ValueError for unusable scripts; errors raised by the
        script itself propagate unchanged.
        """
        if not script or not str(script).strip():
            raise ValueError("No script provided")

        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        # Keys that are not identifiers cannot be addressed from a script anyway
        safe_vars = {str(k): v for k, v in variables.items() if str(k).isidentifier()}

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._evaluate, script, language, safe_vars),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Custom script exceeded {timeout}s deadline")
            raise ScriptTimeoutError(f"Script timed out after {timeout}s")
        except SecurityError as e:
            raise ValueError(f"Script blocked by sandbox: {e}")
        except TemplateError as e:
            raise ValueError(f"Script error: {e}")
