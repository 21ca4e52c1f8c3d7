"""Usage snapshot normalization.

Every vendor reports token counts under its own names. Snapshots are mapped
to ``prompt_tokens`` / ``completion_tokens`` / ``total_tokens`` plus the cache
and reasoning counters when the vendor reports them. Keys the vendor did not
report are left out so that partial snapshots (Anthropic sends input tokens
first and output tokens at the end) merge cleanly.
"""

from typing import Any, Dict, Iterable, Mapping, Optional


def _as_dict(usage_obj) -> Dict[str, Any]:
    if not usage_obj:
        return {}
    if hasattr(usage_obj, "model_dump"):
        return usage_obj.model_dump()
    if isinstance(usage_obj, Mapping):
        return dict(usage_obj)
    return {}


def _first(data: Mapping[str, Any], *keys):
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _compact(**values) -> Dict[str, int]:
    return {key: int(value) for key, value in values.items() if value is not None}


def normalize_openai_usage(usage_obj) -> Optional[Dict[str, int]]:
    """Normalize Chat Completions or Responses API usage.

    Maps prompt_tokens/input_tokens -> prompt_tokens,
    completion_tokens/output_tokens -> completion_tokens. DeepSeek reports
    prompt_cache_hit_tokens / prompt_cache_miss_tokens instead of a prompt total.
    """
    data = _as_dict(usage_obj)
    if not data:
        return None

    prompt_tokens = _first(data, "prompt_tokens", "input_tokens")
    hit = data.get("prompt_cache_hit_tokens")
    miss = data.get("prompt_cache_miss_tokens")
    if prompt_tokens is None and (hit is not None or miss is not None):
        prompt_tokens = (hit or 0) + (miss or 0)

    completion_tokens = _first(data, "completion_tokens", "output_tokens")
    total_tokens = data.get("total_tokens")
    if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
        total_tokens = prompt_tokens + completion_tokens

    prompt_details = _first(data, "prompt_tokens_details", "input_tokens_details") or {}
    completion_details = _first(data, "completion_tokens_details", "output_tokens_details") or {}
    cache_read = hit if hit is not None else prompt_details.get("cached_tokens")

    return _compact(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        cache_read_input_tokens=cache_read,
        reasoning_tokens=completion_details.get("reasoning_tokens"),
    ) or None


def normalize_anthropic_usage(usage_obj) -> Optional[Dict[str, int]]:
    """Normalize an Anthropic ``usage`` block (message_start or message_delta).

    ``total_tokens`` is only filled when both sides are known; the response
    builder recomputes it after merging partial snapshots.
    """
    data = _as_dict(usage_obj)
    if not data:
        return None

    prompt_tokens = data.get("input_tokens")
    completion_tokens = data.get("output_tokens")
    total_tokens = None
    if prompt_tokens is not None and completion_tokens is not None:
        total_tokens = prompt_tokens + completion_tokens

    return _compact(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        cache_read_input_tokens=data.get("cache_read_input_tokens"),
        cache_write_input_tokens=data.get("cache_creation_input_tokens"),
    ) or None


def normalize_gemini_usage(usage_obj) -> Optional[Dict[str, int]]:
    """Normalize Gemini usageMetadata (camelCase on the wire, snake_case in SDK dumps).

    Maps promptTokenCount -> prompt_tokens,
    candidatesTokenCount/responseTokenCount -> completion_tokens,
    totalTokenCount -> total_tokens.
    """
    data = _as_dict(usage_obj)
    if not data:
        return None

    prompt_tokens = _first(data, "prompt_token_count", "promptTokenCount")
    completion_tokens = _first(
        data,
        "candidates_token_count",
        "candidatesTokenCount",
        "response_token_count",
        "responseTokenCount",
    )
    total_tokens = _first(data, "total_token_count", "totalTokenCount")
    if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
        total_tokens = prompt_tokens + completion_tokens

    return _compact(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        cache_read_input_tokens=_first(data, "cached_content_token_count", "cachedContentTokenCount"),
        reasoning_tokens=_first(data, "thoughts_token_count", "thoughtsTokenCount"),
    ) or None


def merge_usage(snapshots: Iterable[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Fold usage snapshots in order; later values win.

    When a snapshot does not carry its own ``total_tokens`` the total is
    recomputed from the merged prompt and completion counts.
    """
    merged: Dict[str, Any] = {}
    for snapshot in snapshots:
        if not snapshot:
            continue
        merged.update({key: value for key, value in snapshot.items() if value is not None})
        if "total_tokens" not in snapshot:
            prompt_tokens = merged.get("prompt_tokens")
            completion_tokens = merged.get("completion_tokens")
            if isinstance(prompt_tokens, int) and isinstance(completion_tokens, int):
                merged["total_tokens"] = prompt_tokens + completion_tokens
    return merged or None
