"""
Parameter management for provider adapters.
Handles merging and mapping of request parameters.
"""
from typing import Dict, Any, Optional, Set
from ...utils.logger import LoggerInterface, LoggerFactory


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ParameterManager:
    """
    Handles parameter management for provider adapters.

    - Merges parameters from defaults, model config and runtime options
    - Filters provider/model defaults against the allowed parameter set
    - Maps standard parameter names to provider-specific (possibly nested) keys
    """

    def __init__(self,
                 default_parameters: Optional[Dict[str, Any]] = None,
                 model_parameters: Optional[Dict[str, Any]] = None,
                 allowed_parameters: Optional[Set[str]] = None,
                 parameter_mapping: Optional[Dict[str, str]] = None,
                 logger: Optional[LoggerInterface] = None):
        """
        Initialize the parameter manager.

        Args:
            default_parameters: Default parameters for the provider
            model_parameters: Model-specific parameters
            allowed_parameters: Set of parameter names allowed by the provider
            parameter_mapping: Standard name -> provider key; dotted keys
                ("generationConfig.temperature") denote nested objects
            logger: Optional logger instance
        """
        self.logger = logger or LoggerFactory.create(name="parameter_manager")

        # Priority order: defaults < model config
        self.default_parameters = {} if default_parameters is None else default_parameters.copy()
        self.model_parameters = {} if model_parameters is None else model_parameters.copy()

        self.allowed_parameters = allowed_parameters or set()
        self.parameter_mapping = parameter_mapping or {}

    def get_base_parameters(self) -> Dict[str, Any]:
        """
        Get the base parameters (defaults + model), filtered by the allowed set.

        Returns:
            Base parameters dictionary
        """
        merged = self.default_parameters.copy()
        merged.update(self.model_parameters)
        if self.allowed_parameters:
            dropped = [k for k in merged if k not in self.allowed_parameters]
            if dropped:
                self.logger.debug(f"Dropping unsupported configured parameters: {dropped}")
            merged = {k: v for k, v in merged.items() if k in self.allowed_parameters}
        return merged

    def merge_parameters(self, runtime_options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge parameters from different sources.

        Priority: defaults < model config < runtime options. Runtime options
        are explicit caller choices and pass through unfiltered.

        Args:
            runtime_options: Runtime options to merge

        Returns:
            Merged parameters dictionary
        """
        merged = self.get_base_parameters()
        merged.update(runtime_options)
        return merged

    def map_parameters(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Map standard parameter names to provider-specific names.

        Args:
            parameters: Parameters to map

        Returns:
            Mapped parameters, nested where the mapping uses dotted keys
        """
        mapped: Dict[str, Any] = {}
        for key, value in parameters.items():
            target = self.parameter_mapping.get(key, key)
            path = target.split(".")
            node = mapped
            for part in path[:-1]:
                node = node.setdefault(part, {})
            if isinstance(value, dict) and isinstance(node.get(path[-1]), dict):
                node[path[-1]] = deep_merge(node[path[-1]], value)
            else:
                node[path[-1]] = value
        return mapped

    def prepare_request_payload(self, runtime_options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge and map parameters for a request payload.

        Args:
            runtime_options: Runtime options for the request

        Returns:
            Processed parameters for the request payload
        """
        mapped_params = self.map_parameters(self.merge_parameters(runtime_options))
        self.logger.debug(f"Prepared request parameters: {list(mapped_params.keys())}")
        return mapped_params

    def update_defaults(self, new_defaults: Dict[str, Any]) -> None:
        """
        Update the default parameters.

        Args:
            new_defaults: New default parameters
        """
        self.default_parameters.update(new_defaults)
