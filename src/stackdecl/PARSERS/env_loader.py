"""
Loading of .env files used as interpolation context.
"""
import os
from typing import Dict, Mapping, Optional
from dotenv import dotenv_values


class EnvLoader:
    """
    Loads .env files with python-dotenv.
    """
    @staticmethod
    def load(env_path: str) -> Dict[str, str]:
        """
        Loads variables from an .env file.

        Keys declared without a value are dropped, so they fall through to
        the process environment.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Dictionary of environment variables.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        if not os.path.isfile(env_path):
            raise FileNotFoundError(env_path)
        values = dotenv_values(env_path, interpolate=False)
        return {key: value for key, value in values.items() if value is not None}

    @staticmethod
    def build_context(env_path: Optional[str] = None, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Builds an interpolation context: the .env file, if any, overlaid with
        the base environment (the process environment by default).
        """
        context = EnvLoader.load(env_path) if env_path else {}
        context.update(os.environ if base is None else base)
        return context
