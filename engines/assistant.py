"""
OptiSys Profit Navigator: Operations Assistant
Relays a user question plus dashboard context to a chat-completions API.
"""
import json
import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from engines.settings import get_settings

RETRYABLE_STATUS = {408, 409, 425, 429}
CONTEXT_LIMIT = 10   # rows per dashboard section included in the prompt

SYSTEM_PROMPT = (
    "You are the OptiSys operations assistant for an industrial maintenance organisation. "
    "Answer using only the dashboard data below. Quote figures exactly and name the "
    "procedures, facilities or workers you rely on.\n\n{context}"
)


class AssistantError(RuntimeError):
    pass


class UpstreamUnavailable(AssistantError):
    """Temporary upstream failure; retried."""


def build_context(dashboard_data):
    data = dashboard_data or {}
    sections = []
    if data.get('summary'):
        sections.append("SUMMARY:\n" + json.dumps(data['summary'], default=str))
    procedures = sorted(data.get('procedures') or [],
                        key=lambda p: p.get('total_incidents') or p.get('incidentCount') or 0, reverse=True)
    for title, rows in (('PROCEDURES', procedures), ('FACILITIES', data.get('facilities') or []),
                        ('WORKERS', data.get('workers') or [])):
        if rows:
            lines = [json.dumps(r, default=str) for r in rows[:CONTEXT_LIMIT]]
            sections.append(f"{title}:\n" + "\n".join(lines))
    return "\n\n".join(sections) if sections else "No dashboard data was provided."


def identify_sources(text, dashboard_data):
    """Names of dashboard entities mentioned in ``text``, in dashboard order."""
    data = dashboard_data or {}
    haystack = (text or '').lower()
    found = []
    for section in ('procedures', 'facilities', 'workers'):
        for row in data.get(section) or []:
            name = str(row.get('name') or '').strip()
            if name and name.lower() in haystack and name not in found:
                found.append(name)
    return found


@retry(
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError, UpstreamUnavailable)),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _chat_completion_request(payload, settings, client=None):
    url = settings.llm_base_url.rstrip("/") + "/chat/completions"
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }
    if client is None:
        with httpx.Client(timeout=httpx.Timeout(settings.llm_timeout_seconds)) as c:
            response = c.post(url, headers=headers, json=payload)
    else:
        response = client.post(url, headers=headers, json=payload)

    if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS:
        logging.warning(f"[assistant] upstream temporary error {response.status_code}, retrying")
        raise UpstreamUnavailable(f"LLM temporary error: {response.status_code}")
    if response.status_code >= 400:
        raise AssistantError(f"LLM request failed ({response.status_code}): {response.text[:300]}")
    return response.json()


def ask_assistant(question, dashboard_data=None, settings=None, client=None):
    """Returns {'answer': str, 'sources': [names]}; raises AssistantError."""
    settings = settings or get_settings()
    if not settings.openai_api_key:
        raise AssistantError("OPENAI_API_KEY is not configured")

    payload = {
        "model": settings.llm_model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT.format(context=build_context(dashboard_data))},
            {"role": "user", "content": question},
        ],
        "temperature": settings.llm_temperature,
        "max_tokens": settings.llm_max_tokens,
    }
    try:
        data = _chat_completion_request(payload, settings, client)
    except (httpx.TimeoutException, httpx.TransportError) as e:
        raise AssistantError(f"LLM unreachable: {type(e).__name__}") from e

    choices = data.get("choices") or []
    content = (choices[0].get("message") or {}).get("content") if choices else None
    answer = str(content or '').strip()
    if not answer:
        raise AssistantError("LLM response did not contain text content")
    return {'answer': answer, 'sources': identify_sources(answer, dashboard_data)}
