"""
Built-in block types.
"""

from __future__ import annotations

from typing import List

from workflow_core.blocks.base import (
    AnyBlockDefinition,
    BlockDefinition,
    InputDefinition,
    Params,
    SubBlockDefinition,
    SubflowDefinition,
    ToolAccess,
)
from workflow_core.schema import SubflowType


def _select_agent_tool(params: Params) -> str:
    model = str(params.get("model") or "").strip().lower()
    if not model:
        raise ValueError("Agent block has no model selected")
    if model.startswith(("gpt", "o1", "o3", "o4")):
        return "openai_chat"
    if model.startswith("claude"):
        return "anthropic_chat"
    if model.startswith("gemini"):
        return "google_chat"
    if model.startswith("deepseek"):
        return "deepseek_chat"
    raise ValueError(f"Unsupported agent model: {model}")


def _select_supabase_tool(params: Params) -> str:
    operation = params.get("operation")
    tools = {
        "query": "supabase_query",
        "insert": "supabase_insert",
        "get_row": "supabase_get_row",
        "update": "supabase_update",
        "delete": "supabase_delete",
    }
    try:
        return tools[operation]
    except KeyError:
        raise ValueError(f"Invalid Supabase operation: {operation}") from None


def _select_teams_tool(params: Params) -> str:
    operation = params.get("operation")
    if operation in {"read_chat", "write_chat", "read_channel", "write_channel"}:
        return f"microsoft_teams_{operation}"
    return "microsoft_teams_read_chat"


def _select_airtable_tool(params: Params) -> str:
    operation = params.get("operation")
    tools = {
        "read": "airtable_list_records",
        "get": "airtable_get_record",
        "create": "airtable_create_records",
        "update": "airtable_update_record",
    }
    try:
        return tools[operation]
    except KeyError:
        raise ValueError(f"Invalid Airtable operation: {operation}") from None


STARTER_BLOCK = BlockDefinition(
    type="starter",
    name="Starter",
    description="Start workflow",
    category="blocks",
    bg_color="#2FB3FF",
    sub_blocks=[
        SubBlockDefinition(id="startWorkflow", type="dropdown", title="Start Workflow", default=lambda _: "manual"),
        SubBlockDefinition(id="webhookProvider", type="dropdown", title="Webhook Provider"),
        SubBlockDefinition(id="webhookPath", type="short-input", title="Webhook Path"),
        SubBlockDefinition(id="inputFormat", type="input-format", title="Input Format"),
    ],
    inputs={"input": InputDefinition(type="json")},
    outputs={"input": "any"},
)

AGENT_BLOCK = BlockDefinition(
    type="agent",
    name="Agent",
    description="Build an agent",
    category="blocks",
    bg_color="#802FFF",
    sub_blocks=[
        SubBlockDefinition(id="systemPrompt", type="long-input", title="System Prompt"),
        SubBlockDefinition(id="context", type="long-input", title="User Prompt"),
        SubBlockDefinition(id="model", type="combobox", title="Model", default=lambda _: "gpt-4o"),
        SubBlockDefinition(id="temperature", type="slider", title="Temperature"),
        SubBlockDefinition(id="apiKey", type="short-input", title="API Key"),
        SubBlockDefinition(id="tools", type="tool-input", title="Tools"),
        SubBlockDefinition(id="responseFormat", type="code", title="Response Format"),
    ],
    tools=ToolAccess(
        access=["openai_chat", "anthropic_chat", "google_chat", "deepseek_chat"],
        selector=_select_agent_tool,
    ),
    inputs={
        "systemPrompt": InputDefinition(type="string"),
        "context": InputDefinition(type="string"),
        "model": InputDefinition(type="string", required=True),
        "apiKey": InputDefinition(type="string", required=True),
        "responseFormat": InputDefinition(type="json"),
        "temperature": InputDefinition(type="number"),
        "tools": InputDefinition(type="json"),
    },
    outputs={"content": "string", "model": "string", "tokens": "any", "toolCalls": "any"},
    supports_custom_tools=True,
)

API_BLOCK = BlockDefinition(
    type="api",
    name="API",
    description="Use any API",
    category="blocks",
    bg_color="#2F55FF",
    sub_blocks=[
        SubBlockDefinition(id="url", type="short-input", title="URL"),
        SubBlockDefinition(id="method", type="dropdown", title="Method", default=lambda _: "GET"),
        SubBlockDefinition(id="params", type="table", title="Query Params"),
        SubBlockDefinition(id="headers", type="table", title="Headers"),
        SubBlockDefinition(id="body", type="code", title="Body"),
    ],
    tools=ToolAccess(access=["http_request"]),
    inputs={
        "url": InputDefinition(type="string", required=True),
        "method": InputDefinition(type="string", required=True),
        "headers": InputDefinition(type="json"),
        "body": InputDefinition(type="json"),
        "params": InputDefinition(type="json"),
    },
    outputs={"data": "any", "status": "number", "headers": "json"},
)

FUNCTION_BLOCK = BlockDefinition(
    type="function",
    name="Function",
    description="Run custom logic",
    category="blocks",
    bg_color="#FF402F",
    sub_blocks=[SubBlockDefinition(id="code", type="code")],
    tools=ToolAccess(access=["function_execute"]),
    inputs={
        "code": InputDefinition(type="string"),
        "timeout": InputDefinition(type="number"),
    },
    outputs={"result": "any", "stdout": "string"},
)

CONDITION_BLOCK = BlockDefinition(
    type="condition",
    name="Condition",
    description="Add a condition",
    category="blocks",
    bg_color="#FF752F",
    sub_blocks=[SubBlockDefinition(id="conditions", type="condition-input")],
    inputs={},
    outputs={"content": "string", "conditionResult": "boolean", "selectedPath": "json", "selectedConditionId": "string"},
)

ROUTER_BLOCK = BlockDefinition(
    type="router",
    name="Router",
    description="Route workflow",
    category="blocks",
    bg_color="#28C43F",
    sub_blocks=[
        SubBlockDefinition(id="prompt", type="long-input", title="Prompt"),
        SubBlockDefinition(id="model", type="dropdown", title="Model", default=lambda _: "gpt-4o"),
        SubBlockDefinition(id="apiKey", type="short-input", title="API Key"),
    ],
    tools=ToolAccess(
        access=["openai_chat", "anthropic_chat", "google_chat", "deepseek_chat"],
        selector=_select_agent_tool,
    ),
    inputs={"prompt": InputDefinition(type="string", required=True)},
    outputs={"content": "string", "model": "string", "tokens": "any", "selectedPath": "json"},
)

RESPONSE_BLOCK = BlockDefinition(
    type="response",
    name="Response",
    description="Send structured API response",
    category="blocks",
    bg_color="#4D5FFF",
    sub_blocks=[
        SubBlockDefinition(id="data", type="code", title="Response Data"),
        SubBlockDefinition(id="status", type="short-input", title="Status Code"),
        SubBlockDefinition(id="headers", type="table", title="Response Headers"),
    ],
    inputs={
        "data": InputDefinition(type="json"),
        "status": InputDefinition(type="number"),
        "headers": InputDefinition(type="json"),
    },
    outputs={"data": "json", "status": "number", "headers": "json"},
)

SUPABASE_BLOCK = BlockDefinition(
    type="supabase",
    name="Supabase",
    description="Use Supabase database",
    category="tools",
    bg_color="#1C1C1C",
    sub_blocks=[
        SubBlockDefinition(id="operation", type="dropdown", title="Operation"),
        SubBlockDefinition(id="projectId", type="short-input", title="Project ID"),
        SubBlockDefinition(id="table", type="short-input", title="Table"),
        SubBlockDefinition(id="apiKey", type="short-input", title="Service Role Secret"),
        SubBlockDefinition(id="data", type="code", title="Data", condition={"field": "operation", "value": "insert"}),
        SubBlockDefinition(id="data", type="code", title="Data", condition={"field": "operation", "value": "update"}),
        SubBlockDefinition(id="filter", type="short-input", title="Filter (PostgREST syntax)"),
        SubBlockDefinition(id="orderBy", type="short-input", title="Order By", condition={"field": "operation", "value": "query"}),
        SubBlockDefinition(id="limit", type="short-input", title="Limit", condition={"field": "operation", "value": "query"}),
    ],
    tools=ToolAccess(
        access=["supabase_query", "supabase_insert", "supabase_get_row", "supabase_update", "supabase_delete"],
        selector=_select_supabase_tool,
    ),
    inputs={
        "operation": InputDefinition(type="string", required=True),
        "projectId": InputDefinition(type="string", required=True),
        "table": InputDefinition(type="string", required=True),
        "apiKey": InputDefinition(type="string", required=True),
        "data": InputDefinition(type="json"),
        "filter": InputDefinition(type="string"),
        "orderBy": InputDefinition(type="string"),
        "limit": InputDefinition(type="number"),
    },
    outputs={"message": "string", "results": "json"},
)

MICROSOFT_TEAMS_BLOCK = BlockDefinition(
    type="microsoft_teams",
    name="Microsoft Teams",
    description="Read, write, and create messages",
    category="tools",
    bg_color="#E0E0E0",
    sub_blocks=[
        SubBlockDefinition(id="operation", type="dropdown", title="Operation"),
        SubBlockDefinition(id="credential", type="oauth-input", title="Microsoft Account"),
        SubBlockDefinition(id="teamId", type="file-selector", title="Select Team"),
        SubBlockDefinition(id="chatId", type="file-selector", title="Select Chat"),
        SubBlockDefinition(id="channelId", type="file-selector", title="Select Channel"),
        SubBlockDefinition(id="content", type="long-input", title="Message"),
    ],
    tools=ToolAccess(
        access=[
            "microsoft_teams_read_chat",
            "microsoft_teams_write_chat",
            "microsoft_teams_read_channel",
            "microsoft_teams_write_channel",
        ],
        selector=_select_teams_tool,
    ),
    inputs={
        "operation": InputDefinition(type="string", required=True),
        "credential": InputDefinition(type="string", required=True),
        "teamId": InputDefinition(type="string"),
        "chatId": InputDefinition(type="string"),
        "channelId": InputDefinition(type="string"),
        "content": InputDefinition(type="string"),
    },
    outputs={"content": "string", "metadata": "json", "updatedContent": "boolean"},
)

AIRTABLE_BLOCK = BlockDefinition(
    type="airtable",
    name="Airtable",
    description="Read, create, and update Airtable",
    category="tools",
    bg_color="#E0E0E0",
    sub_blocks=[
        SubBlockDefinition(id="operation", type="dropdown", title="Operation", default=lambda _: "read"),
        SubBlockDefinition(id="credential", type="oauth-input", title="Airtable Account"),
        SubBlockDefinition(id="baseId", type="short-input", title="Base ID"),
        SubBlockDefinition(id="tableId", type="short-input", title="Table ID"),
        SubBlockDefinition(id="recordId", type="short-input", title="Record ID"),
        SubBlockDefinition(id="fields", type="code", title="Fields"),
    ],
    tools=ToolAccess(
        access=["airtable_list_records", "airtable_get_record", "airtable_create_records", "airtable_update_record"],
        selector=_select_airtable_tool,
    ),
    inputs={
        "operation": InputDefinition(type="string", required=True),
        "credential": InputDefinition(type="string", required=True),
        "baseId": InputDefinition(type="string", required=True),
        "tableId": InputDefinition(type="string", required=True),
        "recordId": InputDefinition(type="string"),
        "fields": InputDefinition(type="json"),
    },
    outputs={"records": "json", "record": "json", "metadata": "json"},
)

LOOP_BLOCK = SubflowDefinition(
    type=SubflowType.LOOP.value,
    name="Loop",
    description="Loop container",
    color="#3b82f6",
    config_keys=("count", "loopType", "collection"),
)

PARALLEL_BLOCK = SubflowDefinition(
    type=SubflowType.PARALLEL.value,
    name="Parallel",
    description="Parallel container",
    color="#8b5cf6",
    config_keys=("count", "parallelType", "collection", "distribution"),
)


def builtin_blocks() -> List[AnyBlockDefinition]:
    return [
        STARTER_BLOCK,
        AGENT_BLOCK,
        API_BLOCK,
        FUNCTION_BLOCK,
        CONDITION_BLOCK,
        ROUTER_BLOCK,
        RESPONSE_BLOCK,
        SUPABASE_BLOCK,
        MICROSOFT_TEAMS_BLOCK,
        AIRTABLE_BLOCK,
        LOOP_BLOCK,
        PARALLEL_BLOCK,
    ]


__all__ = ["builtin_blocks"]
