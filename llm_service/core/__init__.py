"""Provider-agnostic core: types, formatting, usage, retries and the Service.

Import submodules directly (``llm_service.core.usage``, ...); the package
itself stays import-light so leaf modules can depend on each other freely.
"""
