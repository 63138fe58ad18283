import math

# ------------------------------------------------------------
# Display formatting for tables, badges and narrative text
# ------------------------------------------------------------

def _missing(x):
    if x is None:
        return True
    try:
        return math.isnan(float(x))
    except (TypeError, ValueError):
        return True


def fmt_pct_clean(x, decimals=2):
    """0.1234 -> '12.34%'. Missing -> 'N/A'."""
    if _missing(x):
        return "N/A"
    return f"{float(x) * 100:.{decimals}f}%"


def fmt_pct_signed(x, decimals=2):
    """0.1234 -> '+12.34%'."""
    if _missing(x):
        return "N/A"
    return f"{float(x) * 100:+.{decimals}f}%"


def fmt_dollar_clean(x):
    """1234.56 -> '$1,235', -50 -> '-$50'."""
    if _missing(x):
        return "N/A"
    x = float(x)
    if x < 0:
        return f"-${abs(x):,.0f}"
    return f"${x:,.0f}"


def fmt_number_clean(x, decimals=2):
    if _missing(x):
        return "N/A"
    return f"{float(x):,.{decimals}f}"


def fmt_ratio_pct(x):
    """Capture ratios are stored as 1.05 and shown as '105%'."""
    if _missing(x):
        return "N/A"
    return f"{float(x) * 100:.0f}%"
