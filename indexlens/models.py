"""
ORM models.

Five tables share one column set: the master `companies` table and one table
per index membership. The duplication is intentional; rows for the same
symbol are not kept transactionally in sync and are merged at read time
(see services/metric_resolver.py).
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String

from indexlens.database import Base


class CompanyMetricsMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, unique=True, index=True, nullable=False)

    # Identity / display
    name = Column(String)
    rank = Column(Integer)
    country = Column(String)
    sector = Column(String)
    industry = Column(String)
    currency = Column(String)
    market_cap = Column(Float)
    price = Column(Float)
    daily_change = Column(Float)
    daily_change_percent = Column(Float)

    # Latest statement snapshot
    revenue = Column(Float)
    net_income = Column(Float)
    total_assets = Column(Float)
    total_equity = Column(Float)
    total_debt = Column(Float)
    cash_and_equivalents = Column(Float)
    latest_fcf = Column(Float)

    # DCF
    dcf_enterprise_value = Column(Float)
    margin_of_safety = Column(Float)
    dcf_implied_growth = Column(Float)

    # Returns / drawdowns
    return_3_year = Column(Float)
    return_5_year = Column(Float)
    return_10_year = Column(Float)
    max_drawdown_3_year = Column(Float)
    max_drawdown_5_year = Column(Float)
    max_drawdown_10_year = Column(Float)
    ar_mdd_ratio_3_year = Column(Float)
    ar_mdd_ratio_5_year = Column(Float)
    ar_mdd_ratio_10_year = Column(Float)

    # ROIC
    roic = Column(Float)
    roic_10y_avg = Column(Float)
    roic_10y_std = Column(Float)
    roic_stability = Column(Float)
    roic_stability_score = Column(Float)
    roic_y1 = Column(Float)
    roic_y2 = Column(Float)
    roic_y3 = Column(Float)
    roic_y4 = Column(Float)
    roic_y5 = Column(Float)
    roic_y6 = Column(Float)
    roic_y7 = Column(Float)
    roic_y8 = Column(Float)
    roic_y9 = Column(Float)
    roic_y10 = Column(Float)

    # Revenue / FCF history (most recent = y1)
    revenue_y1 = Column(Float)
    revenue_y2 = Column(Float)
    revenue_y3 = Column(Float)
    revenue_y4 = Column(Float)
    revenue_y5 = Column(Float)
    revenue_y6 = Column(Float)
    revenue_y7 = Column(Float)
    revenue_y8 = Column(Float)
    revenue_y9 = Column(Float)
    revenue_y10 = Column(Float)
    fcf_y1 = Column(Float)
    fcf_y2 = Column(Float)
    fcf_y3 = Column(Float)
    fcf_y4 = Column(Float)
    fcf_y5 = Column(Float)
    fcf_y6 = Column(Float)
    fcf_y7 = Column(Float)
    fcf_y8 = Column(Float)
    fcf_y9 = Column(Float)
    fcf_y10 = Column(Float)
    fcf_margin = Column(Float)
    fcf_margin_median_10y = Column(Float)

    # Growth
    revenue_growth_3y = Column(Float)
    revenue_growth_5y = Column(Float)
    revenue_growth_10y = Column(Float)

    # DuPont / valuation ratios
    asset_turnover = Column(Float)
    financial_leverage = Column(Float)
    roe = Column(Float)
    net_profit_margin = Column(Float)
    price_to_sales_ratio = Column(Float)
    eps = Column(Float)
    pe_ratio = Column(Float)
    peg_ratio = Column(Float)

    # Vendor debt / coverage ratios
    debt_to_equity = Column(Float)
    interest_coverage = Column(Float)
    cash_flow_to_debt = Column(Float)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Company(CompanyMetricsMixin, Base):
    __tablename__ = "companies"


class Sp500Company(CompanyMetricsMixin, Base):
    __tablename__ = "sp500_companies"


class Nasdaq100Company(CompanyMetricsMixin, Base):
    __tablename__ = "nasdaq100_companies"


class DowJonesCompany(CompanyMetricsMixin, Base):
    __tablename__ = "dow_jones_companies"


class Ftse100Company(CompanyMetricsMixin, Base):
    __tablename__ = "ftse100_companies"


MASTER_TABLE = "companies"

TABLE_MODELS: dict[str, type] = {
    "companies": Company,
    "sp500_companies": Sp500Company,
    "nasdaq100_companies": Nasdaq100Company,
    "dow_jones_companies": DowJonesCompany,
    "ftse100_companies": Ftse100Company,
}

# Columns owned by the row itself rather than by a metric computation
_BOOKKEEPING_COLUMNS = frozenset(["id", "symbol", "updated_at"])

DATA_COLUMNS: tuple[str, ...] = tuple(
    col.name for col in Company.__table__.columns if col.name not in _BOOKKEEPING_COLUMNS
)
