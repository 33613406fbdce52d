"""KipuBank: capped custodial vault ledger."""

__version__ = "0.1.0"
