#!/usr/bin/env python3
"""
Development script to run the actuator API locally.

Starts the FastAPI application with uvicorn; the periodic stats aggregation
and trend sampling start with the application lifespan.
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def main():
    """Run the FastAPI application in development mode."""
    os.environ.setdefault("ENVIRONMENT", "development")
    os.environ.setdefault("VERSION", "1.0.0")

    print("Starting runtime actuators")
    print(f"   Environment: {os.environ.get('ENVIRONMENT')}")
    print(f"   Dependencies: {os.environ.get('HEALTH_DEPENDENCIES', '[]')}")
    print("   API load: http://localhost:8080/actuator/api-load")
    print("   Health: http://localhost:8080/actuator/health")
    print()

    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8080")),
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
