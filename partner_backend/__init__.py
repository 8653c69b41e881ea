"""Partner program backend.

Applications intake, admin review, Tapfiliate provisioning and the monthly
partner earnings ledger.
"""

__all__: list[str] = []
