import matplotlib.pyplot as plt
import pandas as pd
import plotly.graph_objects as go

INCOME_SOURCES = [
    ("Salary", "Salary", 'rgba(65, 105, 225, 0.7)'),
    ("Pension", "Pension", 'rgba(34, 139, 34, 0.7)'),
    ("Survivor_Pension", "Survivor Pension", 'rgba(46, 139, 87, 0.5)'),
    ("FERS_Supplement", "FERS Supplement", 'rgba(255, 165, 0, 0.7)'),
    ("TSP_Withdrawal", "TSP", 'rgba(219, 112, 147, 0.7)'),
    ("Taxable_Withdrawal", "Taxable Account", 'rgba(160, 82, 45, 0.6)'),
    ("Social_Security", "Social Security", 'rgba(75, 0, 130, 0.7)'),
]


def _add_vline(fig, year, label, use_plotly, ax=None):
    if year is None:
        return
    if use_plotly:
        fig.add_vline(x=year, line_dash="dash", line_color="red",
                      annotation_text=label, annotation_position="top right")
    else:
        ax.axvline(x=year, color='r', linestyle='--', label=label)


def plot_income_sources(df, scenario_title, retire_year=None, use_plotly=True):
    """
    Stacked area chart of annual income sources with the net income line
    (after taxes, TSP contributions and healthcare) on top.
    `df` is a projection DataFrame from analysis_utils.projection_to_dataframe.
    """
    years = df["Year"]
    sources = [(col, label, color) for col, label, color in INCOME_SOURCES if col in df and df[col].abs().sum() > 0]
    gross = sum((df[col] for col, _, _ in sources), pd.Series(0.0, index=df.index))

    if use_plotly:
        fig = go.Figure()
        stack = pd.Series(0.0, index=df.index)
        for i, (col, label, color) in enumerate(sources):
            stack = stack + df[col]
            fig.add_trace(go.Scatter(
                x=years, y=stack,
                mode='none', fill='tozeroy' if i == 0 else 'tonexty', name=label,
                fillcolor=color
            ))
        fig.add_trace(go.Scatter(
            x=years, y=df["Net_Income"],
            mode='lines', name="Net Income",
            line=dict(color='black', width=2)
        ))
        _add_vline(fig, retire_year, "Retirement", use_plotly)
        fig.update_layout(
            title=f"Income Source Breakdown - {scenario_title}",
            xaxis_title="Year",
            yaxis_title="Annual Income ($)",
            hovermode="x unified",
            yaxis=dict(tickprefix="$", showgrid=True, range=[0, max(gross.max(), 1.0) * 1.1]),
            legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="left", x=0)
        )
        return fig
    else:
        fig, ax = plt.subplots(figsize=(10, 6))
        if sources:
            ax.stackplot(years, *[df[col] for col, _, _ in sources],
                         labels=[label for _, label, _ in sources])
        ax.plot(years, df["Net_Income"], color='black', linewidth=2.0, label="Net Income")
        _add_vline(fig, retire_year, "Retirement", use_plotly, ax)
        ax.set_title(f"Income Source Breakdown - {scenario_title}")
        ax.set_xlabel("Year")
        ax.set_ylabel("Annual Income ($)")
        ax.legend(loc='upper left')
        ax.grid(True)
        return fig


def plot_tsp_balances(df, retire_year=None, use_plotly=True):
    """Household TSP balance plus one line per participant"""
    person_columns = [c for c in df.columns if c.startswith("TSP_Balance_")]
    if use_plotly:
        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=df["Year"], y=df["TSP_Balance"],
            mode='lines', name="Household TSP",
            line=dict(color='green', width=3)
        ))
        for col in person_columns:
            fig.add_trace(go.Scatter(
                x=df["Year"], y=df[col],
                mode='lines', name=col.replace("TSP_Balance_", ""),
                line=dict(width=1.5, dash='dot')
            ))
        _add_vline(fig, retire_year, "Retirement", use_plotly)
        fig.update_layout(
            title="TSP Balance Over Time",
            xaxis_title="Year",
            yaxis_title="Balance ($)",
            hovermode="x unified",
            yaxis=dict(tickprefix="$", showgrid=True)
        )
        return fig
    else:
        fig, ax = plt.subplots(figsize=(10, 5))
        ax.plot(df["Year"], df["TSP_Balance"], label="Household TSP", color="green", linewidth=2.5)
        for col in person_columns:
            ax.plot(df["Year"], df[col], linestyle=':', label=col.replace("TSP_Balance_", ""))
        _add_vline(fig, retire_year, "Retirement", use_plotly, ax)
        ax.set_title("TSP Balance Over Time")
        ax.set_xlabel("Year")
        ax.set_ylabel("Balance ($)")
        ax.legend()
        ax.grid(True)
        return fig


def plot_cumulative_income(df_a, df_b, label_a="Scenario A", label_b="Scenario B",
                           breakeven_year=None, breakeven_value=None, use_plotly=True):
    """Plot cumulative income comparison with breakeven point"""
    # Year is both index name and column in projection frames
    df_a = df_a.reset_index(drop=True)
    df_b = df_b.reset_index(drop=True)
    chart_data = df_a[["Year", "Cumulative_Income"]].rename(columns={"Cumulative_Income": "A"}).merge(
        df_b[["Year", "Cumulative_Income"]].rename(columns={"Cumulative_Income": "B"}),
        on="Year", how="inner"
    ).dropna()

    if use_plotly:
        fig = go.Figure()
        fig.add_trace(go.Scatter(x=chart_data["Year"], y=chart_data["A"], mode='lines', name=label_a,
                                 line=dict(color='royalblue', width=2)))
        fig.add_trace(go.Scatter(x=chart_data["Year"], y=chart_data["B"], mode='lines', name=label_b,
                                 line=dict(color='forestgreen', width=2)))
        if breakeven_year is not None and breakeven_value is not None:
            fig.add_trace(go.Scatter(
                x=[breakeven_year], y=[breakeven_value],
                mode='markers', name="Breakeven",
                marker=dict(color='red', size=10)
            ))
        fig.update_layout(
            title="Cumulative Net Income",
            xaxis_title="Year",
            yaxis_title="Cumulative Income ($)",
            hovermode="x unified",
            yaxis=dict(tickprefix="$", showgrid=True)
        )
        return fig
    else:
        fig, ax = plt.subplots(figsize=(10, 5))
        ax.plot(chart_data["Year"], chart_data["A"], label=label_a, color='royalblue')
        ax.plot(chart_data["Year"], chart_data["B"], label=label_b, color='forestgreen')
        if breakeven_year is not None and breakeven_value is not None:
            ax.scatter([breakeven_year], [breakeven_value], color='red', zorder=5, label="Breakeven")
        ax.set_title("Cumulative Net Income")
        ax.set_xlabel("Year")
        ax.set_ylabel("Cumulative Income ($)")
        ax.legend()
        ax.grid(True)
        return fig


def plot_monte_carlo_bands(mc_results, title="Monte Carlo Net Income", prefix="p", use_plotly=True):
    """
    Median line with 25-75 and 5-95 percentile bands. `prefix` selects net
    income ("p") or TSP balance ("tsp_p") columns of a Monte Carlo result.
    """
    years = mc_results.index
    p5, p25, p50, p75, p95 = (mc_results[f"{prefix}{p}"] for p in (5, 25, 50, 75, 95))

    if use_plotly:
        fig = go.Figure()
        fig.add_trace(go.Scatter(x=years, y=p95, mode='lines', line=dict(width=0), showlegend=False))
        fig.add_trace(go.Scatter(x=years, y=p5, mode='lines', line=dict(width=0), fill='tonexty',
                                 fillcolor='rgba(65, 105, 225, 0.15)', name="5th-95th percentile"))
        fig.add_trace(go.Scatter(x=years, y=p75, mode='lines', line=dict(width=0), showlegend=False))
        fig.add_trace(go.Scatter(x=years, y=p25, mode='lines', line=dict(width=0), fill='tonexty',
                                 fillcolor='rgba(65, 105, 225, 0.35)', name="25th-75th percentile"))
        fig.add_trace(go.Scatter(x=years, y=p50, mode='lines', name="Median",
                                 line=dict(color='royalblue', width=2)))
        fig.update_layout(
            title=title,
            xaxis_title="Year",
            yaxis_title="Amount ($)",
            hovermode="x unified",
            yaxis=dict(tickprefix="$", showgrid=True)
        )
        return fig
    else:
        fig, ax = plt.subplots(figsize=(10, 5))
        ax.fill_between(years, p5, p95, color='royalblue', alpha=0.15, label="5th-95th percentile")
        ax.fill_between(years, p25, p75, color='royalblue', alpha=0.35, label="25th-75th percentile")
        ax.plot(years, p50, color='royalblue', linewidth=2, label="Median")
        ax.set_title(title)
        ax.set_xlabel("Year")
        ax.set_ylabel("Amount ($)")
        ax.legend()
        ax.grid(True)
        return fig


def plot_stress_test_comparison(results, use_plotly=True):
    """Net income of each stress case; `results` maps case name to a projection DataFrame"""
    colors = {"best_case": 'green', "average_case": 'blue', "worst_case": 'red'}
    if use_plotly:
        fig = go.Figure()
        for name, df in results.items():
            fig.add_trace(go.Scatter(
                x=df["Year"], y=df["Net_Income"],
                mode='lines', name=name.replace("_", " ").title(),
                line=dict(color=colors.get(name), width=2)
            ))
        fig.update_layout(
            title="Stress Test: Net Income",
            xaxis_title="Year",
            yaxis_title="Net Income ($)",
            hovermode="x unified",
            yaxis=dict(tickprefix="$", showgrid=True)
        )
        return fig
    else:
        fig, ax = plt.subplots(figsize=(10, 5))
        for name, df in results.items():
            ax.plot(df["Year"], df["Net_Income"], label=name.replace("_", " ").title(), color=colors.get(name))
        ax.set_title("Stress Test: Net Income")
        ax.set_xlabel("Year")
        ax.set_ylabel("Net Income ($)")
        ax.legend()
        ax.grid(True)
        return fig
