from report_formatting import fmt_pct_clean, fmt_pct_signed, fmt_dollar_clean

BASIS_PHRASES = {
    "year_1": "based on your holdings' 12-month outlook and long-term averages after that",
    "long_term": "based on long-term asset class averages",
}


def generate_goal_recommendation(probability, basis="long_term"):
    """
    Plain-language recommendation for a probability of success.
    Simulates an advisor note using template-based logic.
    """
    phrase = BASIS_PHRASES.get(basis, BASIS_PHRASES["long_term"])

    if probability >= 0.9:
        return (
            f"Your goal is highly achievable with your current portfolio and timeline ({phrase}). "
            "Consider if you want to take on less risk or aim higher."
        )
    if probability >= 0.7:
        return (
            f"You have a strong chance of reaching your goal ({phrase}). "
            "Staying consistent with contributions will improve your odds."
        )
    if probability >= 0.5:
        return (
            f"Your goal is achievable but not certain ({phrase}). "
            "Consider increasing contributions or extending your timeline."
        )
    if probability >= 0.3:
        return (
            f"Reaching your goal will be challenging ({phrase}). "
            "You may need to increase contributions, extend your timeline, or adjust your target."
        )
    return (
        f"Your goal may be difficult to achieve with current parameters ({phrase}). "
        "Consider consulting with an advisor to explore options."
    )


def generate_goal_brief(analysis):
    """
    Short markdown summary of a goal analysis for the goal page.
    `analysis` is the goalAnalysis dict returned by analyze_goal.
    """
    if not analysis:
        return "Enter your goal details to see a projection."

    prob = analysis["probabilityOfSuccess"]
    proj = analysis["projectedValues"]
    gap = analysis["shortfall"]["median"]

    intro = (
        f"Reaching **{fmt_dollar_clean(analysis['goalAmount'])}** in "
        f"**{analysis['timeHorizon']} years** has an estimated **{fmt_pct_clean(prob['median'], 0)}** "
        f"probability of success (range {fmt_pct_clean(prob['downside'], 0)} to {fmt_pct_clean(prob['upside'], 0)})."
    )

    if gap >= 0:
        outcome = f"The median projection of **{fmt_dollar_clean(proj['median'])}** clears the goal by {fmt_dollar_clean(gap)}."
    else:
        outcome = f"The median projection of **{fmt_dollar_clean(proj['median'])}** falls short by {fmt_dollar_clean(abs(gap))}."

    assumptions = f"Expected return used: **{fmt_pct_signed(analysis['expectedReturn'], 1)}** per year."

    return f"{intro}\n\n{outcome}\n\n{assumptions}"


def generate_upload_brief(summary):
    """Narrative line for the admin page after a CSV upload."""
    if not summary:
        return ""

    text = (
        f"Processed **{summary['portfolioCount']}** portfolios as of **{summary['asOfDate']}**."
    )
    if summary.get("benchmarkAvailable"):
        text += " Alpha, beta and capture ratios are measured against the S&P 500 Total Return index."
    else:
        text += " Benchmark data was unavailable, so alpha, beta and capture ratios were left blank."
    return text
