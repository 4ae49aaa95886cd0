from .tenancy import Organization
from .ledger import LedgerEntry
from .wallets import Wallet, CreditLot
from .gift_cards import GiftCard
from .promotions import PriceRule, PriceRuleRedemption
from .registers import CashDrawer, CashDrawerSession, CashDrawerTransaction, CashCount
from .reconciliation import Payout, PayoutItem, Invoice, BankStatement, BankStatementLine, MatchResult

__all__ = [
    'Organization',
    'LedgerEntry',
    'Wallet', 'CreditLot',
    'GiftCard',
    'PriceRule', 'PriceRuleRedemption',
    'CashDrawer', 'CashDrawerSession', 'CashDrawerTransaction', 'CashCount',
    'Payout', 'PayoutItem', 'Invoice', 'BankStatement', 'BankStatementLine', 'MatchResult',
]
