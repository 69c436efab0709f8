"""MetricSync — Unified Metric Registry.

Defines the closed catalog of KPI metrics and provider types.
When adding a new provider, register its tag here and its adapter in
connectors/factory.py so reconciliation and trends treat it uniformly.
"""

from enum import Enum
from typing import Dict, Optional


class MetricName(str, Enum):
    """Canonical KPI names."""

    MRR = "MRR"
    NET_PROFIT = "NetProfit"
    BURN_RATE = "BurnRate"
    CASH_ON_HAND = "CashOnHand"
    USER_SIGNUPS = "UserSignups"
    RUNWAY = "Runway"
    CAC = "CAC"
    CHURN_RATE = "ChurnRate"
    ACTIVE_USERS = "ActiveUsers"
    CONVERSION_RATE = "ConversionRate"
    LTV = "LTV"
    DAU = "DAU"
    WAU = "WAU"
    WEBSITE_TRAFFIC = "WebsiteTraffic"
    LEAD_CONVERSION_RATE = "LeadConversionRate"
    TASKS_COMPLETED = "TasksCompleted"
    TASK_COMPLETION_RATE = "TaskCompletionRate"
    REVENUE = "Revenue"


class ProviderType(str, Enum):
    """External systems that can supply metric data."""

    STRIPE = "Stripe"
    GOOGLE_ANALYTICS = "GoogleAnalytics"
    AIRTABLE = "Airtable"
    GOOGLE_SHEETS = "GoogleSheets"
    MANUAL = "Manual"
    CSV = "CSV"
    NOTION = "Notion"


class MetricType(str, Enum):
    """How a metric is categorised."""

    CURRENCY = "currency"  # MRR, profit, cash
    COUNT = "count"  # Users, signups, tasks
    RATE = "rate"  # Percentages: churn, conversion
    DURATION = "duration"  # Runway days


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self,
        name: MetricName,
        metric_type: MetricType,
        label: str,
        unit: str = "",
        description: str = "",
        is_core: bool = False,
        goal: Optional[float] = None,
    ):
        self.name = name
        self.metric_type = metric_type
        self.label = label
        self.unit = unit
        self.description = description
        self.is_core = is_core
        self.goal = goal

    def __repr__(self) -> str:
        return f"<Metric {self.name.value} ({self.metric_type.value})>"


class ProviderDefinition:
    """Describes a provider type."""

    def __init__(self, provider: ProviderType, label: str, description: str, auth_type: str):
        self.provider = provider
        self.label = label
        self.description = description
        self.auth_type = auth_type  # oauth | api_key

    def __repr__(self) -> str:
        return f"<Provider {self.provider.value} ({self.auth_type})>"


# ─────────────────────────────────────────────
# KPI METRICS — Canonical Registry
# ─────────────────────────────────────────────

KPI_METRICS: Dict[MetricName, MetricDefinition] = {
    # Core
    MetricName.MRR: MetricDefinition(
        MetricName.MRR, MetricType.CURRENCY, "Monthly Recurring Revenue", "$",
        "Total monthly recurring revenue", is_core=True, goal=50000,
    ),
    MetricName.NET_PROFIT: MetricDefinition(
        MetricName.NET_PROFIT, MetricType.CURRENCY, "Net Profit", "$",
        "Monthly net profit/loss", is_core=True, goal=10000,
    ),
    MetricName.BURN_RATE: MetricDefinition(
        MetricName.BURN_RATE, MetricType.CURRENCY, "Burn Rate", "$/month",
        "Monthly cash burn rate", is_core=True, goal=5000,
    ),
    MetricName.CASH_ON_HAND: MetricDefinition(
        MetricName.CASH_ON_HAND, MetricType.CURRENCY, "Cash on Hand", "$",
        "Current available cash", is_core=True, goal=100000,
    ),
    MetricName.USER_SIGNUPS: MetricDefinition(
        MetricName.USER_SIGNUPS, MetricType.COUNT, "User Signups", "users",
        "New user registrations", is_core=True, goal=1000,
    ),
    MetricName.RUNWAY: MetricDefinition(
        MetricName.RUNWAY, MetricType.DURATION, "Runway (Days)", "days",
        "Estimated days until cash runs out", is_core=True, goal=365,
    ),
    # Customizable
    MetricName.CAC: MetricDefinition(
        MetricName.CAC, MetricType.CURRENCY, "Customer Acquisition Cost", "$",
        "Cost to acquire a new customer", goal=100,
    ),
    MetricName.CHURN_RATE: MetricDefinition(
        MetricName.CHURN_RATE, MetricType.RATE, "Churn Rate", "%",
        "Percentage of customers who cancel", goal=2,
    ),
    MetricName.ACTIVE_USERS: MetricDefinition(
        MetricName.ACTIVE_USERS, MetricType.COUNT, "Active Users", "users",
        "Daily/Weekly active users", goal=5000,
    ),
    MetricName.CONVERSION_RATE: MetricDefinition(
        MetricName.CONVERSION_RATE, MetricType.RATE, "Conversion Rate", "%",
        "Lead to customer conversion rate", goal=5,
    ),
    # Legacy
    MetricName.LTV: MetricDefinition(
        MetricName.LTV, MetricType.CURRENCY, "Lifetime Value", "$",
        "Total value of a customer over time", goal=2400,
    ),
    MetricName.DAU: MetricDefinition(
        MetricName.DAU, MetricType.COUNT, "Daily Active Users", "users",
        "Number of daily active users", goal=1000,
    ),
    MetricName.WAU: MetricDefinition(
        MetricName.WAU, MetricType.COUNT, "Weekly Active Users", "users",
        "Number of weekly active users", goal=5000,
    ),
    MetricName.WEBSITE_TRAFFIC: MetricDefinition(
        MetricName.WEBSITE_TRAFFIC, MetricType.COUNT, "Website Traffic", "visitors",
        "Number of website visitors", goal=20000,
    ),
    MetricName.LEAD_CONVERSION_RATE: MetricDefinition(
        MetricName.LEAD_CONVERSION_RATE, MetricType.RATE, "Lead Conversion Rate", "%",
        "Percentage of leads converted", goal=2,
    ),
    # Workspace / billing
    MetricName.TASKS_COMPLETED: MetricDefinition(
        MetricName.TASKS_COMPLETED, MetricType.COUNT, "Tasks Completed", "tasks",
        "Number of tasks completed this week", goal=10,
    ),
    MetricName.TASK_COMPLETION_RATE: MetricDefinition(
        MetricName.TASK_COMPLETION_RATE, MetricType.RATE, "Task Completion Rate", "%",
        "Completed tasks / tasks in window",
    ),
    MetricName.REVENUE: MetricDefinition(
        MetricName.REVENUE, MetricType.CURRENCY, "Revenue", "$",
        "Sum of successful payments in the sync window",
    ),
}

CORE_METRICS = [m for m, d in KPI_METRICS.items() if d.is_core]

# Metrics generated by seed_sample_data
SAMPLE_METRICS = [
    MetricName.MRR,
    MetricName.NET_PROFIT,
    MetricName.BURN_RATE,
    MetricName.CASH_ON_HAND,
    MetricName.USER_SIGNUPS,
    MetricName.RUNWAY,
    MetricName.CAC,
    MetricName.CHURN_RATE,
    MetricName.ACTIVE_USERS,
    MetricName.CONVERSION_RATE,
]


# ─────────────────────────────────────────────
# PROVIDERS
# ─────────────────────────────────────────────

PROVIDERS: Dict[ProviderType, ProviderDefinition] = {
    ProviderType.STRIPE: ProviderDefinition(
        ProviderType.STRIPE, "Stripe", "Payment processing and subscription data", "api_key"
    ),
    ProviderType.GOOGLE_ANALYTICS: ProviderDefinition(
        ProviderType.GOOGLE_ANALYTICS, "Google Analytics 4", "Website traffic and user behavior", "oauth"
    ),
    ProviderType.AIRTABLE: ProviderDefinition(
        ProviderType.AIRTABLE, "Airtable", "Custom data and metrics", "api_key"
    ),
    ProviderType.GOOGLE_SHEETS: ProviderDefinition(
        ProviderType.GOOGLE_SHEETS, "Google Sheets", "Manual data entry and calculations", "oauth"
    ),
    ProviderType.MANUAL: ProviderDefinition(
        ProviderType.MANUAL, "Manual Entry", "Direct input of KPI values", "api_key"
    ),
    ProviderType.CSV: ProviderDefinition(
        ProviderType.CSV, "CSV Upload", "Bulk data import from CSV files", "api_key"
    ),
    ProviderType.NOTION: ProviderDefinition(
        ProviderType.NOTION, "Notion", "Data from Notion pages and databases", "api_key"
    ),
}

# User-entered fallback data; never mixed into an authoritative trend series
MANUAL_PROVIDERS = {ProviderType.MANUAL}


# ─────────────────────────────────────────────
# HEADER SYNONYMS — tabular column → metric
# ─────────────────────────────────────────────

HEADER_SYNONYMS: Dict[str, MetricName] = {
    "mrr": MetricName.MRR,
    "monthly recurring revenue": MetricName.MRR,
    "monthly recurring revenue ($)": MetricName.MRR,
    "mrr ($)": MetricName.MRR,
    "recurring revenue": MetricName.MRR,
    "net profit": MetricName.NET_PROFIT,
    "netprofit": MetricName.NET_PROFIT,
    "profit": MetricName.NET_PROFIT,
    "net income": MetricName.NET_PROFIT,
    "burn rate": MetricName.BURN_RATE,
    "burnrate": MetricName.BURN_RATE,
    "burn": MetricName.BURN_RATE,
    "monthly burn": MetricName.BURN_RATE,
    "cash on hand": MetricName.CASH_ON_HAND,
    "cashonhand": MetricName.CASH_ON_HAND,
    "cash": MetricName.CASH_ON_HAND,
    "cash balance": MetricName.CASH_ON_HAND,
    "user signups": MetricName.USER_SIGNUPS,
    "usersignups": MetricName.USER_SIGNUPS,
    "signups": MetricName.USER_SIGNUPS,
    "sign ups": MetricName.USER_SIGNUPS,
    "new users": MetricName.USER_SIGNUPS,
    "runway": MetricName.RUNWAY,
    "runway (days)": MetricName.RUNWAY,
    "runway days": MetricName.RUNWAY,
    "cac": MetricName.CAC,
    "customer acquisition cost": MetricName.CAC,
    "churn": MetricName.CHURN_RATE,
    "churn rate": MetricName.CHURN_RATE,
    "churnrate": MetricName.CHURN_RATE,
    "churn rate (%)": MetricName.CHURN_RATE,
    "churn %": MetricName.CHURN_RATE,
    "active users": MetricName.ACTIVE_USERS,
    "activeusers": MetricName.ACTIVE_USERS,
    "users": MetricName.ACTIVE_USERS,
    "conversion rate": MetricName.CONVERSION_RATE,
    "conversionrate": MetricName.CONVERSION_RATE,
    "conversion rate (%)": MetricName.CONVERSION_RATE,
    "conversion": MetricName.CONVERSION_RATE,
    "ltv": MetricName.LTV,
    "lifetime value": MetricName.LTV,
    "customer lifetime value": MetricName.LTV,
    "dau": MetricName.DAU,
    "daily active users": MetricName.DAU,
    "wau": MetricName.WAU,
    "weekly active users": MetricName.WAU,
    "website traffic": MetricName.WEBSITE_TRAFFIC,
    "traffic": MetricName.WEBSITE_TRAFFIC,
    "visitors": MetricName.WEBSITE_TRAFFIC,
    "sessions": MetricName.WEBSITE_TRAFFIC,
    "lead conversion rate": MetricName.LEAD_CONVERSION_RATE,
    "lead conversion": MetricName.LEAD_CONVERSION_RATE,
    "tasks completed": MetricName.TASKS_COMPLETED,
    "completed tasks": MetricName.TASKS_COMPLETED,
    "revenue": MetricName.REVENUE,
    "total revenue": MetricName.REVENUE,
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────


def get_metric(name: str) -> MetricDefinition | None:
    """Look up a metric by name."""
    try:
        return KPI_METRICS.get(MetricName(name))
    except ValueError:
        return None


def metric_for_header(header: str) -> MetricName | None:
    """Map a raw column header to its canonical metric, if known."""
    return HEADER_SYNONYMS.get(str(header).strip().lower())


def is_manual_provider(provider: ProviderType | str) -> bool:
    """True for user-entered fallback sources."""
    try:
        return ProviderType(provider) in MANUAL_PROVIDERS
    except ValueError:
        return False
