import os

os.environ.setdefault("BSE_OTEL_ENABLED", "false")
