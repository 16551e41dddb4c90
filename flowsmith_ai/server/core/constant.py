"""Constants shared by the server application."""

PROJECT_NAME = "FlowSmith-AI"
API_V1_STR = "/api/v1"
VERSION = "0.1.0"
