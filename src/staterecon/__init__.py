"""State reconciliation and audit core for the influencer CRM."""

__version__ = "0.1.0"
