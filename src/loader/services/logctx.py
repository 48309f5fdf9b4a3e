def ctx_prefix(*, parent: str, child: str, strategy: str, call: str | None = None) -> str:
    base = f"parent={parent} child={child} strategy={strategy}"
    return f"{base} call={call}" if call is not None else base
