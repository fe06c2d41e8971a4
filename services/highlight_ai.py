"""
AI-assisted anomaly highlighting.

Sends the merged rows to a hosted model and asks which ones should be
highlighted, based on their ``IsAnomalous`` / ``AnomalyScore`` fields. The
model must answer with one classification per row.
"""
import json
import logging
import re
from typing import Any, Dict, List, Mapping, Sequence

import anthropic

from errors import NetworkError
from table_view import Highlight

logger = logging.getLogger(__name__)

SYSTEM_MSG = (
    "You are an AI assistant that helps determine whether rows in a dataset "
    "should be highlighted as anomalous. Reply with JSON only."
)

PROMPT_TEMPLATE = """You will receive an array of data rows and a flag indicating whether highlighting is enabled. The rows may or may not have a column called "IsAnomalous" or "AnomalyScore".

Analyze each row and decide, based on the "IsAnomalous" field (or an "AnomalyScore" above 0.5) if present, whether it should be highlighted. If neither field is present, default to no highlighting. Respect the isHighlightingEnabled flag.

Return a JSON object {{"highlightedRows": [...]}} with exactly {count} entries, one per input row in order. Each entry is "red" for an anomalous row, "green" for a row that was checked and is normal, or "none" when the row carries no anomaly information.

Is Highlighting Enabled: {enabled}
Data Rows:
{rows}
"""

_VALUE_MAP = {
    True: Highlight.RED,
    False: Highlight.NONE,
    'red': Highlight.RED,
    'green': Highlight.GREEN,
    'none': Highlight.NONE,
}


def build_prompt(data_rows: Sequence[Mapping[str, Any]], enabled: bool) -> str:
    rows = "\n".join(f"{index}: {json.dumps(dict(row), ensure_ascii=False)}"
                     for index, row in enumerate(data_rows))
    return PROMPT_TEMPLATE.format(count=len(data_rows), enabled=str(enabled).lower(), rows=rows)


def _json_candidates(reply: str) -> List[str]:
    reply = reply.strip()
    candidates = [reply]
    fenced = re.search(r'```(?:json)?\s*(.*?)```', reply, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = reply.find('{'), reply.rfind('}')
    if start != -1 and end > start:
        candidates.append(reply[start:end + 1])
    return candidates


def extract_json(reply: str) -> Dict[str, Any]:
    """The JSON object in a model reply, bare, fenced or surrounded by prose"""
    for candidate in _json_candidates(reply):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise json.JSONDecodeError("Model reply contains no JSON object", reply, 0)


def parse_classifications(payload: Any, expected: int) -> List[Highlight]:
    """Validate the model's answer: same length as the input, known values only"""
    if not isinstance(payload, dict) or not isinstance(payload.get('highlightedRows'), list):
        raise ValueError("Response has no 'highlightedRows' array")
    values = payload['highlightedRows']
    if len(values) != expected:
        raise ValueError(f"Expected {expected} classifications, got {len(values)}")

    result = []
    for value in values:
        key = value.lower() if isinstance(value, str) else value
        if isinstance(key, bool) or key in ('red', 'green', 'none'):
            result.append(_VALUE_MAP[key])
        else:
            raise ValueError(f"Unexpected classification: {value!r}")
    return result


class AiHighlighter:
    """Single-shot classifier; failures raise NetworkError and are never retried"""

    def __init__(self, api_key: str = None, model: str = 'claude-3-5-haiku-latest',
                 client=None, max_tokens: int = 4096):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def classify(self, data_rows: Sequence[Mapping[str, Any]], enabled: bool) -> List[Highlight]:
        if not enabled or not data_rows:
            return [Highlight.NONE] * len(data_rows)
        if not self.is_configured:
            raise NetworkError("AI highlighting is not configured.")

        prompt = build_prompt(data_rows, enabled)
        logger.info(f"Requesting AI highlighting for {len(data_rows)} rows with {self.model}")
        try:
            resp = self.client.messages.create(
                model=self.model, max_tokens=self.max_tokens, temperature=0,
                system=SYSTEM_MSG, messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error(f"AI highlight request failed: {e}")
            raise NetworkError("AI highlighting failed. Please try again later.") from e

        text = next((block.text for block in (resp.content or [])
                     if getattr(block, 'type', None) == 'text'), None)
        if text is None:
            logger.error("AI highlight response contained no text block")
            raise NetworkError("AI highlighting returned an unusable response.")

        try:
            classifications = parse_classifications(extract_json(text), len(data_rows))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.error(f"AI highlight response rejected: {e}")
            raise NetworkError("AI highlighting returned an unusable response.") from e

        flagged = sum(1 for c in classifications if c == Highlight.RED)
        logger.info(f"AI highlighting flagged {flagged} of {len(classifications)} rows")
        return classifications
