"""
GENERATE step: asks the coder-role model for a candidate remediation.
"""

import logging
from typing import Optional

from llm_gateway.client import LLMClient, strip_code_fences
from llm_gateway.exceptions import LLMResponseError
from remediation.models import RemediationAttempt, RemediationRequest
from remediation.prompts import build_generation_prompt, system_prompt
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

GENERATION_ROLE = "coder"


def clean_generated_code(code: str) -> str:
    """Strip markdown fences and surrounding blank lines; end with one newline."""
    cleaned = strip_code_fences(code).strip()
    return cleaned + "\n" if cleaned else ""


class CodeGenerator:
    """
    Usage:
        generator = CodeGenerator(LLMClient(factory), config)
        code = generator.generate(request)                    # first attempt
        code = generator.generate(request, previous=attempt)  # revision
    """

    def __init__(self, client: LLMClient, config: ScanEngineConfig = None):
        self.client = client
        self.config = config or DEFAULT_CONFIG

    def generate(self, request: RemediationRequest,
                 previous: Optional[RemediationAttempt] = None) -> str:
        """
        Candidate code for the request.

        Raises:
            ProviderUnavailableError: the model call failed.
            LLMResponseError: the model answered with no code.
        """
        mode = "revision" if previous is not None else "initial"
        logger.info(f"Generating {request.target.value} code ({mode}) for '{request.issue.title}'")

        content = self.client.complete_text(
            GENERATION_ROLE,
            build_generation_prompt(request, previous),
            system=system_prompt(request.target),
            temperature=self.config.generation_temperature,
            max_tokens=self.config.generation_max_tokens,
        )
        code = clean_generated_code(content)
        if not code:
            raise LLMResponseError("LLM returned empty response", raw_content=content)
        return code

    def is_available(self) -> bool:
        return self.client.is_available()
