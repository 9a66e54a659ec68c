"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ExecutionStatusEnum(str, Enum):
    """Enumeration of execution and step statuses."""
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class NodeKind(str, Enum):
    """Kinds of nodes the editor can place on a canvas."""
    TRIGGER = "trigger"
    FUNCTION = "function"
    HTTP = "http"
    WEBHOOK = "webhook"
    API = "api"
    DEFAULT = "default"


class IntegrationKind(str, Enum):
    """Third-party integrations a node can be bound to."""
    SLACK = "slack"
    DISCORD = "discord"
    SHEETS = "sheets"
    TELEGRAM = "telegram"
    TWILIO = "twilio"
    MANUAL = "manual"


class NodeConfig(BaseModel):
    """Base for kind-specific node configuration.

    Configuration is an open map: unknown keys are kept so that the editor can
    store whatever it needs. Fields are only checked by the handler that runs
    the node.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TriggerConfig(NodeConfig):
    """Configuration of a trigger node."""


class HttpConfig(NodeConfig):
    """Configuration of an HTTP request node."""
    url: str = Field(default="", description="Request URL")
    method: str = Field(default="GET", description="HTTP method")
    body: Optional[Any] = Field(default=None, description="Request body; defaults to the node input")

    @field_validator('url', mode='before')
    @classmethod
    def coerce_url(cls, url):
        return "" if url is None else str(url).strip()

    @field_validator('method', mode='before')
    @classmethod
    def normalize_method(cls, method):
        return (str(method) if method else "GET").upper()


class FunctionConfig(NodeConfig):
    """Configuration of a transform node."""
    code: str = Field(default="", description="User-supplied transform code")

    @field_validator('code', mode='before')
    @classmethod
    def coerce_code(cls, code):
        return "" if code is None else str(code)


class WebhookConfig(NodeConfig):
    """Configuration of a chat webhook node."""
    url: str = Field(default="", description="Webhook URL")
    body_parameters: str = Field(
        default="",
        alias="bodyParameters",
        description="Body template, one 'key: value' pair per line"
    )

    @field_validator('url', 'body_parameters', mode='before')
    @classmethod
    def coerce_text(cls, value):
        return "" if value is None else str(value)


class PassThroughConfig(NodeConfig):
    """Configuration of nodes that forward their input unchanged."""


CONFIG_TYPES = {
    NodeKind.TRIGGER: TriggerConfig,
    NodeKind.HTTP: HttpConfig,
    NodeKind.FUNCTION: FunctionConfig,
    NodeKind.WEBHOOK: WebhookConfig,
    NodeKind.DEFAULT: PassThroughConfig,
}

# Keys of the editor's node payload that describe the node rather than configure it
_DESCRIPTOR_KEYS = {"nodeType", "integrationType", "label"}


class NodeDefinition(BaseModel):
    """A node of a workflow graph.

    ``kind`` is the parsed node kind; ``node_type`` keeps the raw string the
    editor stored, which is what step records display. ``config`` is always an
    instance of the config model matching ``handler_kind``.
    """
    id: str = Field(..., description="Unique identifier of the node within its workflow")
    node_type: str = Field(default=NodeKind.DEFAULT.value, description="Raw node type as stored")
    kind: NodeKind = Field(default=NodeKind.DEFAULT, description="Parsed node kind")
    integration_kind: Optional[str] = Field(None, description="Integration sub-classifier")
    label: Optional[str] = Field(None, description="Display name")
    input_role: bool = Field(default=False, description="Whether the editor marked this node as the graph input")
    position: Optional[Dict[str, Any]] = Field(None, description="Canvas position")
    config: Any = Field(default_factory=dict, description="Kind-specific configuration")

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, node_id):
        if node_id is None or not str(node_id).strip():
            raise ValueError("Node ID cannot be empty")
        return str(node_id)

    @model_validator(mode='after')
    def bind_config(self):
        """Coerce the raw configuration into the model for this node's handler."""
        config_type = CONFIG_TYPES[self.handler_kind]
        if not isinstance(self.config, config_type):
            if isinstance(self.config, BaseModel):
                raw = self.config.model_dump(by_alias=True)
            else:
                raw = dict(self.config or {})
            self.config = config_type.model_validate(raw)
        return self

    @property
    def is_trigger(self) -> bool:
        return self.kind == NodeKind.TRIGGER or self.input_role

    @property
    def display_name(self) -> str:
        return self.label or self.id

    @property
    def handler_kind(self) -> NodeKind:
        """Tag used to pick the handler that runs this node."""
        if self.kind in (NodeKind.TRIGGER, NodeKind.HTTP, NodeKind.FUNCTION):
            return self.kind
        if self.integration_kind == IntegrationKind.DISCORD.value:
            return NodeKind.WEBHOOK
        return NodeKind.DEFAULT

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> 'NodeDefinition':
        """Build a node from the editor's stored representation.

        The editor stores ``{id, type, position, data: {nodeType,
        integrationType, label, ...config}}``.
        """
        data = raw.get("data") or {}
        node_type = data.get("nodeType") or raw.get("type") or NodeKind.DEFAULT.value
        try:
            kind = NodeKind(node_type)
        except ValueError:
            kind = NodeKind.DEFAULT

        return cls(
            id=raw.get("id"),
            node_type=node_type,
            kind=kind,
            integration_kind=data.get("integrationType"),
            label=data.get("label"),
            input_role=raw.get("type") == "input",
            position=raw.get("position"),
            config={key: value for key, value in data.items() if key not in _DESCRIPTOR_KEYS},
        )


class EdgeDefinition(BaseModel):
    """Directed connection between two nodes."""
    id: Optional[str] = Field(None, description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> 'EdgeDefinition':
        return cls(id=raw.get("id"), source=str(raw.get("source")), target=str(raw.get("target")))


class _CamelModel(BaseModel):
    """Models serialised to API clients with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecutionStepRecord(_CamelModel):
    """Persisted record of one node run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    execution_id: str
    step_number: int
    node_id: str
    node_name: str
    node_type: str
    status: ExecutionStatusEnum
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    input: Any = None
    output: Any = None
    error: Optional[Dict[str, Any]] = None


class ExecutionRecord(_CamelModel):
    """Persisted record of one workflow run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    workflow_id: str
    status: ExecutionStatusEnum
    trigger_type: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    input: Any = None
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    success_rate: Optional[int] = None
    steps: List[ExecutionStepRecord] = Field(default_factory=list)


class ExecutionResult(_CamelModel):
    """Outcome of a single call to the executor."""
    ok: bool
    execution_id: str
    test_mode: bool = False
    input: Any = None
    output: Any = None
    steps: List[ExecutionStepRecord] = Field(default_factory=list)
    error: Optional[str] = None


class ExecutionSummary(_CamelModel):
    """Row of the execution list."""
    id: str
    workflow_id: str
    workflow_name: Optional[str] = None
    status: ExecutionStatusEnum
    trigger_type: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class ExecutionPage(_CamelModel):
    """A page of execution summaries."""
    items: List[ExecutionSummary] = Field(default_factory=list)
    total: int = 0


class ExecutionStats(_CamelModel):
    """Today's execution counters."""
    total_today: int = 0
    failed_today: int = 0
    success_rate: int = 0
    average_ms: int = 0


class WorkflowCreate(_CamelModel):
    """Payload used to create a workflow."""
    name: str = Field(default="Untitled Workflow", description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    trigger_type: Optional[str] = Field(None, description="Trigger integration")
    trigger_config: Optional[Dict[str, Any]] = Field(None, description="Trigger settings")
    rf_nodes: List[Dict[str, Any]] = Field(default_factory=list, description="Editor nodes")
    rf_edges: List[Dict[str, Any]] = Field(default_factory=list, description="Editor edges")

    @field_validator('name', mode='before')
    @classmethod
    def default_name(cls, name):
        if name is None or not str(name).strip():
            return "Untitled Workflow"
        return str(name).strip()


class WorkflowUpdate(_CamelModel):
    """Partial update of a workflow; unset fields are left unchanged."""
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    trigger_type: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None
    rf_nodes: Optional[List[Dict[str, Any]]] = None
    rf_edges: Optional[List[Dict[str, Any]]] = None


class WorkflowRecord(_CamelModel):
    """Stored workflow."""
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = False
    trigger_type: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None
    rf_nodes: List[Dict[str, Any]] = Field(default_factory=list)
    rf_edges: List[Dict[str, Any]] = Field(default_factory=list)
    last_run_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
