# Overview: Static catalog of supported finance settings and their defaults.

SETTINGS_CATALOG = [
    {
        "key": "default_vat_rate",
        "type": "decimal",
        "default_value_json": "16",
        "validation_json": {"min": 0, "max": 100},
        "description": "Standard VAT rate (percent) used to split VAT-inclusive fee payments",
    },
    {
        "key": "expense_approval_threshold",
        "type": "decimal",
        "default_value_json": "10000",
        "validation_json": {"min": 0},
        "description": "Expenses at or above this amount wait for approval; smaller ones are auto-approved",
    },
    {
        "key": "default_currency",
        "type": "string",
        "default_value_json": "KES",
        "validation_json": {"pattern": "^[A-Z]{3}$"},
        "description": "Default ISO currency code for new bank accounts",
    },
    {
        "key": "expense_approval_required",
        "type": "bool",
        "default_value_json": True,
        "validation_json": {},
        "description": "When false, every expense is auto-approved regardless of amount",
    },
    {
        "key": "allow_overdraft",
        "type": "bool",
        "default_value_json": True,
        "validation_json": {},
        "description": "Allow withdrawals and transfers to leave a bank account with a negative balance",
    },
]

CATALOG_BY_KEY = {row["key"]: row for row in SETTINGS_CATALOG}
