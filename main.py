"""
Entry point for the Generation Studio service.

Builds the configuration once, hands it to the application factory and,
when executed directly, serves the application with Uvicorn.
"""

import uvicorn

import configuration
import generation_studio.server_factory

application_configuration = configuration.ApplicationConfiguration()

fastapi_application = generation_studio.server_factory.create_application(application_configuration)

if __name__ == "__main__":
    uvicorn.run(
        "main:fastapi_application",
        host=application_configuration.application_host,
        port=application_configuration.application_port,
        log_config=None,
    )
