"""Public HTTP API for the agent chat core."""
