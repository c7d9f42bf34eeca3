from __future__ import annotations

from dataclasses import replace

from .models import ParsedMessage, ToolResult, ToolUse


def correlate(messages: list[ParsedMessage]) -> list[ParsedMessage]:
    """Nest each ToolResult under the ToolUse sharing its call id.

    Results without a matching ToolUse in ``messages`` stay where they are. Nested results
    keep their own timestamps and the order of everything else is unchanged.
    """
    results_by_id: dict[str, list[ToolResult]] = {}
    use_ids: set[str] = set()
    for message in messages:
        if isinstance(message, ToolResult) and message.tool_call_id is not None:
            results_by_id.setdefault(message.tool_call_id, []).append(message)
        elif isinstance(message, ToolUse) and message.tool_call_id is not None:
            use_ids.add(message.tool_call_id)

    consumed: set[str] = set()
    correlated: list[ParsedMessage] = []
    for message in messages:
        if isinstance(message, ToolUse):
            call_id = message.tool_call_id
            if call_id is not None and call_id in results_by_id and call_id not in consumed:
                consumed.add(call_id)
                message = replace(message, results=[*message.results, *results_by_id[call_id]])
            correlated.append(message)
        elif isinstance(message, ToolResult):
            if message.tool_call_id is None or message.tool_call_id not in use_ids:
                correlated.append(message)
        else:
            correlated.append(message)
    return correlated
