import json
import logging
import re
from typing import Iterable, List

from litellm import acompletion

from .. import config
from ..errors import OracleError
from ..prompts import (
    get_extraction_prompt,
    get_refinement_prompt,
    get_restructure_prompt,
    get_summary_prompt,
)
from ..schemas.graph import GraphData
from ..schemas.transcript import TranscriptEntry
from .transcripts import format_transcripts

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_reply(reply: str) -> dict:
    """
    Pulls the JSON object out of a model reply. Markdown fences and chatter
    around the outermost braces are ignored.
    """
    text = (reply or "").strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    match = _OBJECT_RE.search(text)
    if not match:
        raise OracleError("No JSON object found in LLM response")
    try:
        data = json.loads(match.group(0))
    except ValueError as e:
        raise OracleError(f"LLM response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise OracleError("LLM response JSON is not an object")
    return data


class GraphExtractor:
    """Asks the language model for graph deltas. Its output is never trusted."""

    def __init__(self, model=None, api_base=None, api_key=None, timeout=None):
        self.model = model or config.LLM_MODEL
        self.api_base = api_base or config.LLM_API_BASE
        self.api_key = api_key or config.LLM_API_KEY
        self.timeout = timeout or config.LLM_TIMEOUT

    async def _complete(self, prompt: str) -> str:
        try:
            response = await acompletion(
                model=self.model,
                api_base=self.api_base,
                api_key=self.api_key,
                messages=[{"role": "user", "content": prompt}],
                timeout=self.timeout,
            )
            content = response.choices[0].message.content
        except Exception as e:
            logger.error("Error calling LLM: %s", e)
            raise OracleError(f"Error calling LLM: {e}") from e
        if not content or not content.strip():
            raise OracleError("LLM returned an empty response")
        return content

    async def extract_delta(self, text: str, existing_labels: Iterable[str] = ()) -> dict:
        reply = await self._complete(get_extraction_prompt(text, list(existing_labels)))
        logger.debug("Extraction reply: %s", reply)
        return parse_json_reply(reply)

    async def propose_refinement(self, graph: GraphData) -> dict:
        return parse_json_reply(await self._complete(get_refinement_prompt(graph)))

    async def propose_restructure(self, graph: GraphData) -> dict:
        return parse_json_reply(await self._complete(get_restructure_prompt(graph)))

    async def summarize_node(self, label: str, transcripts: List[TranscriptEntry],
                             window_ms: int = config.TRANSCRIPT_WINDOW_MS) -> str:
        prompt = get_summary_prompt(label, format_transcripts(transcripts), window_ms)
        return (await self._complete(prompt)).strip()
