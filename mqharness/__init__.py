# -----------------------------------------------------------------------------
# MQHARNESS
# -----------------------------------------------------------------------------
# Container test harness for the messaging-server image.
# -----------------------------------------------------------------------------

__version__ = "1.0.0"
