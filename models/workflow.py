from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from enum import Enum
from datetime import datetime

from models.condition import Condition


class TriggerType(str, Enum):
    MANUAL = "manual"
    CHAT_MESSAGE = "chat_message"
    INTEGRATION_CHANGE = "integration_change"
    TIME_BASED = "time_based"
    WEBHOOK = "webhook"
    SENTIMENT_ANALYSIS = "sentiment_analysis"
    KEYWORD_DETECTION = "keyword_detection"
    CUSTOMER_ACTION = "customer_action"


class ActionType(str, Enum):
    # Notifications
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SEND_SLACK = "send_slack"
    # CRM
    HUBSPOT_CREATE_CONTACT = "hubspot_create_contact"
    HUBSPOT_UPDATE_CONTACT = "hubspot_update_contact"
    HUBSPOT_CREATE_DEAL = "hubspot_create_deal"
    HUBSPOT_UPDATE_DEAL = "hubspot_update_deal"
    HUBSPOT_CREATE_TICKET = "hubspot_create_ticket"
    SALESFORCE_CREATE_CONTACT = "salesforce_create_contact"
    SALESFORCE_UPDATE_CONTACT = "salesforce_update_contact"
    SALESFORCE_CREATE_OPPORTUNITY = "salesforce_create_opportunity"
    SALESFORCE_UPDATE_OPPORTUNITY = "salesforce_update_opportunity"
    SALESFORCE_CREATE_TASK = "salesforce_create_task"
    SALESFORCE_CREATE_CASE = "salesforce_create_case"
    # E-commerce
    SHOPIFY_CREATE_CUSTOMER = "shopify_create_customer"
    SHOPIFY_UPDATE_CUSTOMER = "shopify_update_customer"
    SHOPIFY_CREATE_ORDER = "shopify_create_order"
    SHOPIFY_UPDATE_ORDER = "shopify_update_order"
    SHOPIFY_CREATE_DISCOUNT = "shopify_create_discount"
    # Control
    ESCALATE_TO_HUMAN = "escalate_to_human"
    DELAY = "delay"
    WEBHOOK = "webhook"
    CUSTOM_SCRIPT = "custom_script"


class ScheduleType(str, Enum):
    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class ScheduleConfig(BaseModel):
    schedule_type: ScheduleType
    schedule_value: Optional[float] = None  # minutes for interval, day of month for monthly
    schedule_time: Optional[str] = None  # "HH:MM"
    schedule_day: Optional[str] = None  # weekday name for weekly
    cron_expression: Optional[str] = None
    timezone: str = "UTC"


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=1, ge=1)
    delay_ms: float = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: float = Field(default=30000, ge=0)
    retry_on_error_types: Optional[List[str]] = None


class TriggerConfig(BaseModel):
    conditions: List[Condition] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    schedule: Optional[ScheduleConfig] = None


class Step(BaseModel):
    id: str
    name: Optional[str] = None
    action_type: ActionType
    config: Dict[str, Any] = Field(default_factory=dict)
    conditions: List[Condition] = Field(default_factory=list)
    required: bool = True
    retry: Optional[RetryPolicy] = None


class WorkflowDefinition(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    user_id: Optional[str] = None
    active: bool = True
    trigger_type: TriggerType
    trigger_conditions: TriggerConfig = Field(default_factory=TriggerConfig)
    steps: List[Step] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    last_triggered: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
