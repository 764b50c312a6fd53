"""ecsview - interactive terminal viewer and scaler for ECS services."""

__version__ = "0.1.0"
