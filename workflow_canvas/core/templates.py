"""Step template catalog and workflow template library.

Every step template declares a pydantic schema for its ``config``. Steps
remember the template key they came from, so later config edits are
checked against the same schema. Fields that are genuinely freeform
(headers, bodies, metadata, custom code) stay open maps or strings.
"""

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..models.core import Connection, DocumentModel, Position, Step, StepType, Workflow
from .exceptions import ValidationError
from .logging import get_logger

logger = get_logger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class StepConfig(BaseModel):
    """Base for step config schemas; unknown keys are rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class WebhookTriggerConfig(StepConfig):
    method: HttpMethod = "POST"
    path: str = "/webhook"
    require_auth: bool = False

    @field_validator('path')
    @classmethod
    def validate_path(cls, path):
        if not path.startswith("/"):
            raise ValueError("Webhook path must start with '/'")
        return path


class ScheduleTriggerConfig(StepConfig):
    schedule: str = Field("0 0 * * *", description="Five-field cron expression")
    timezone: str = "UTC"

    @field_validator('schedule')
    @classmethod
    def validate_schedule(cls, schedule):
        if len(schedule.split()) != 5:
            raise ValueError("Schedule must be a five-field cron expression")
        return schedule


class HttpRequestConfig(StepConfig):
    method: HttpMethod = "GET"
    url: str = "https://api.example.com"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = Field(default_factory=dict)


class SendEmailConfig(StepConfig):
    to: str = ""
    subject: str = ""
    body: str = ""


class IfConditionConfig(StepConfig):
    condition: str = ""
    true_step: Optional[str] = None
    false_step: Optional[str] = None


class CodeTransformConfig(StepConfig):
    language: str = "python"
    code: str = "# Transform data here\nreturn data"


class KnowledgeQueryConfig(StepConfig):
    query: str = ""
    node_type: str = "all"
    limit: int = Field(10, ge=1, le=1000)


class KnowledgeCreateConfig(StepConfig):
    node_type: str = "concept"
    name: str = ""
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StepTemplate(BaseModel):
    """A reusable starting point for a step of a given type."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str = Field(..., description="Unique template key")
    type: StepType = Field(..., description="Type of step the template creates")
    name: str = Field(..., description="Default step name")
    description: str = Field("", description="What the step does")
    config_model: Type[StepConfig] = Field(..., description="Schema of the step config")

    def default_config(self) -> Dict[str, Any]:
        return self.config_model().model_dump(by_alias=True, mode="json")

    def _aliased(self, values: Dict[str, Any]) -> Dict[str, Any]:
        fields = self.config_model.model_fields
        return {(fields[key].alias or key) if key in fields else key: value for key, value in values.items()}

    def merge_config(self, base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge overrides into a config; either may use snake_case or camelCase keys."""
        return self.build_config({**self._aliased(base), **self._aliased(overrides)})

    def build_config(self, values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Validate a config against this template's schema.

        Args:
            values: Config values; missing keys take the schema defaults

        Returns:
            Normalized config dictionary (camelCase keys)

        Raises:
            ValidationError: If the config does not fit the schema
        """
        try:
            config = self.config_model.model_validate(self._aliased(values or {}))
        except PydanticValidationError as e:
            errors = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError(
                f"Invalid config for template '{self.key}'",
                validation_errors=errors
            )
        return config.model_dump(by_alias=True, mode="json")

    def describe(self) -> Dict[str, Any]:
        """JSON-friendly description including the config schema."""
        return {
            "key": self.key,
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "defaultConfig": self.default_config(),
            "configSchema": self.config_model.model_json_schema(by_alias=True),
        }


DEFAULT_STEP_TEMPLATES: List[StepTemplate] = [
    StepTemplate(key="trigger.webhook", type=StepType.TRIGGER, name="Webhook",
                 description="Trigger workflow on HTTP request", config_model=WebhookTriggerConfig),
    StepTemplate(key="trigger.schedule", type=StepType.TRIGGER, name="Schedule",
                 description="Trigger workflow on a schedule", config_model=ScheduleTriggerConfig),
    StepTemplate(key="action.http_request", type=StepType.ACTION, name="HTTP Request",
                 description="Make an HTTP request", config_model=HttpRequestConfig),
    StepTemplate(key="action.send_email", type=StepType.ACTION, name="Send Email",
                 description="Send an email notification", config_model=SendEmailConfig),
    StepTemplate(key="condition.if", type=StepType.CONDITION, name="If Condition",
                 description="Branch based on a condition", config_model=IfConditionConfig),
    StepTemplate(key="transformation.code", type=StepType.TRANSFORMATION, name="Code",
                 description="Transform data with custom code", config_model=CodeTransformConfig),
    StepTemplate(key="knowledge.query", type=StepType.KNOWLEDGE_QUERY, name="Query Knowledge Graph",
                 description="Search the knowledge graph", config_model=KnowledgeQueryConfig),
    StepTemplate(key="knowledge.create", type=StepType.KNOWLEDGE_QUERY, name="Create Knowledge Node",
                 description="Add a node to the knowledge graph", config_model=KnowledgeCreateConfig),
]


class StepTemplateCatalog:
    """Read-only lookup of step templates by key and by step type."""

    def __init__(self, templates: Optional[List[StepTemplate]] = None):
        self._templates: Dict[str, StepTemplate] = {}
        for template in templates if templates is not None else DEFAULT_STEP_TEMPLATES:
            if template.key in self._templates:
                raise ValueError(f"Duplicate step template key: {template.key}")
            self._templates[template.key] = template

    def get(self, key: str) -> StepTemplate:
        """
        Look up a template by key.

        Raises:
            ValidationError: If no template has that key
        """
        template = self._templates.get(key)
        if template is None:
            raise ValidationError(f"Unknown step template '{key}'")
        return template

    def __contains__(self, key: str) -> bool:
        return key in self._templates

    def for_type(self, step_type: StepType) -> List[StepTemplate]:
        return [template for template in self._templates.values() if template.type == step_type]

    def by_type(self) -> Dict[StepType, List[StepTemplate]]:
        return {step_type: self.for_type(step_type) for step_type in StepType}

    def all(self) -> List[StepTemplate]:
        return list(self._templates.values())


_default_catalog: Optional[StepTemplateCatalog] = None


def get_step_catalog() -> StepTemplateCatalog:
    """Get the shared default step template catalog."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = StepTemplateCatalog()
    return _default_catalog


class WorkflowTemplate(DocumentModel):
    """A complete workflow users can start from."""
    id: str = Field(..., description="Template identifier")
    name: str = Field(..., description="Template name")
    description: str = Field("", description="What the workflow does")
    category: str = Field(..., description="Grouping shown in the template library")
    workflow: Workflow = Field(..., description="Workflow to instantiate")
    thumbnail: Optional[str] = Field(None, description="Preview image URL")


def filter_templates(
    templates: List[WorkflowTemplate],
    search_term: Optional[str] = None,
    category: Optional[str] = None
) -> List[WorkflowTemplate]:
    """Filter by case-insensitive name/description search and exact category."""
    filtered = list(templates)

    if search_term:
        term = search_term.lower()
        filtered = [
            template for template in filtered
            if term in template.name.lower() or term in template.description.lower()
        ]

    if category:
        filtered = [template for template in filtered if template.category == category]

    return filtered


def template_categories(templates: List[WorkflowTemplate]) -> List[str]:
    """Sorted unique categories of a template collection."""
    return sorted({template.category for template in templates})


def _template_step(catalog: StepTemplateCatalog, step_id: str, template_key: str, x: float, y: float,
                   name: Optional[str] = None, **overrides) -> Step:
    template = catalog.get(template_key)
    return Step(
        id=step_id,
        type=template.type,
        name=name or template.name,
        description=template.description,
        config=template.build_config(overrides),
        position=Position(x=x, y=y),
        template=template.key
    )


def builtin_workflow_templates(catalog: Optional[StepTemplateCatalog] = None) -> List[WorkflowTemplate]:
    """Starter workflows offered by the template library."""
    catalog = catalog or get_step_catalog()

    webhook_to_email = Workflow(
        id="template-webhook-to-email",
        name="Webhook to Email",
        description="Send an email whenever a webhook is called",
        steps=[
            _template_step(catalog, "webhook", "trigger.webhook", 150, 100, path="/notify"),
            _template_step(catalog, "email", "action.send_email", 400, 100,
                           to="team@example.com", subject="Webhook received"),
        ],
        connections=[Connection(id="webhook-email", source="webhook", target="email")]
    )

    scheduled_sync = Workflow(
        id="template-scheduled-sync",
        name="Scheduled Data Sync",
        description="Fetch data every hour, transform it and store it in the knowledge graph",
        steps=[
            _template_step(catalog, "schedule", "trigger.schedule", 150, 100, schedule="0 * * * *"),
            _template_step(catalog, "fetch", "action.http_request", 400, 100, name="Fetch Records"),
            _template_step(catalog, "transform", "transformation.code", 650, 100, name="Normalize Records"),
            _template_step(catalog, "store", "knowledge.create", 400, 300, name="Store Records",
                           node_type="dataset"),
        ],
        connections=[
            Connection(id="schedule-fetch", source="schedule", target="fetch"),
            Connection(id="fetch-transform", source="fetch", target="transform"),
            Connection(id="transform-store", source="transform", target="store"),
        ]
    )

    conditional_alert = Workflow(
        id="template-conditional-alert",
        name="Conditional Alert",
        description="Query the knowledge graph and alert when matches are found",
        steps=[
            _template_step(catalog, "webhook", "trigger.webhook", 150, 100, path="/check"),
            _template_step(catalog, "query", "knowledge.query", 400, 100, query="status:critical"),
            _template_step(catalog, "check", "condition.if", 650, 100, condition="len(data) > 0"),
            _template_step(catalog, "alert", "action.send_email", 650, 300, name="Send Alert",
                           subject="Critical items found"),
        ],
        connections=[
            Connection(id="webhook-query", source="webhook", target="query"),
            Connection(id="query-check", source="query", target="check"),
            Connection(id="check-alert", source="check", target="alert", label="true"),
        ]
    )

    return [
        WorkflowTemplate(id="webhook-to-email", name=webhook_to_email.name,
                         description=webhook_to_email.description, category="Notifications",
                         workflow=webhook_to_email),
        WorkflowTemplate(id="scheduled-sync", name=scheduled_sync.name,
                         description=scheduled_sync.description, category="Data",
                         workflow=scheduled_sync),
        WorkflowTemplate(id="conditional-alert", name=conditional_alert.name,
                         description=conditional_alert.description, category="Notifications",
                         workflow=conditional_alert),
    ]
