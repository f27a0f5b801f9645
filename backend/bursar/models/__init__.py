from .registry import Account, FinancialYear, FinancialYearPointer
from .budgets import Budget, BudgetItem, BudgetAllocation
from .ledger import Vendor, IncomeRecord, ExpenseRecord
from .banking import BankAccount, BankTransaction
from .petty_cash import PettyCashCustodian, PettyCashEntry
from .settings import FinanceSetting
from .documents import DocumentSequence, FinanceEvent

__all__ = [
    'Account', 'FinancialYear', 'FinancialYearPointer',
    'Budget', 'BudgetItem', 'BudgetAllocation',
    'Vendor', 'IncomeRecord', 'ExpenseRecord',
    'BankAccount', 'BankTransaction',
    'PettyCashCustodian', 'PettyCashEntry',
    'FinanceSetting',
    'DocumentSequence', 'FinanceEvent',
]
