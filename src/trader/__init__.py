"""
Client assembly and entrypoint logic.

`BrokerageClient` wires the broker, data and trading layers together; `runner`
holds the process entrypoint used by `main.py` at the repo root.
"""
