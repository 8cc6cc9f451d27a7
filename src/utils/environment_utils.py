from dotenv import load_dotenv
import os

# Utils
from utils.log_utils import LogUtil

"""
Utility class for environment variables
"""
class EnvironmentUtils:
    def __init__(self, log_util: LogUtil):

        # Load environment variables
        load_dotenv()

        # Initialize logger
        self.log_util = log_util

        # Environment variables
        self.env_variables = {
            "APP_ENV": os.getenv("APP_ENV", "production"),
            "HOST": os.getenv("HOST", "0.0.0.0"),
            "PORT": int(os.getenv("PORT", "8018")),
            "ORG_ID": os.getenv("ORG_ID", "ChatflowEngine"),
            "LOKI_URL": os.getenv("LOKI_URL", ""),
            "MONGO_USERNAME": os.getenv("MONGO_USERNAME", "chatflow"),
            "MONGO_PASSWORD": os.getenv("MONGO_PASSWORD", ""),
            "MONGO_AUTH_SOURCE": os.getenv("MONGO_AUTH_SOURCE", "admin"),
            "MONGO_HOST": os.getenv("MONGO_HOST", "localhost"),
            "MONGO_PORT": int(os.getenv("MONGO_PORT", "27017")),
            "MONGO_DB_NAME": os.getenv("MONGO_DB_NAME", "chatflow_db"),
            "USE_MEMORY_STORE": os.getenv("USE_MEMORY_STORE", "false").lower() == "true",
            "MAX_WALK_STEPS": int(os.getenv("MAX_WALK_STEPS", "50")),
            "LOCK_TIMEOUT_SECONDS": float(os.getenv("LOCK_TIMEOUT_SECONDS", "10")),
            "DELIVERY_TIMEOUT_SECONDS": float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "10")),
            "DELAY_CHECK_INTERVAL_SECONDS": int(os.getenv("DELAY_CHECK_INTERVAL_SECONDS", "5")),
            "MESSENGER_GRAPH_API_URL": os.getenv("MESSENGER_GRAPH_API_URL", "https://graph.facebook.com/v18.0"),
            "DEBUG": os.getenv("DEBUG", "false"),
        }

    def get_env_variable(self, variable_name: str) -> str | int | float | bool:
        if variable_name not in self.env_variables:
            self.log_util.error(service_name="EnvironmentUtils", message=f"Environment variable {variable_name} not found")
            raise ValueError(f"Environment variable {variable_name} not found")
        return self.env_variables[variable_name]
