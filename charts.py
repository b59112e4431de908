"""
Plotly chart builders for retirement simulation visualizations.
Creates interactive charts for balance distributions, percentile bands,
withdrawal sources and scenario comparisons.
"""
import plotly.graph_objects as go
import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional

from cashflow import YearlyCashFlow
from sensitivity import SensitivityResult
from stress import StressTestReport


def create_terminal_wealth_distribution(ending_balances: np.ndarray,
                                        title: str = "Ending Balance Distribution") -> go.Figure:
    """
    Create histogram showing the distribution of ending balances.

    Args:
        ending_balances: Array of ending balance values from simulation
        title: Chart title

    Returns:
        Plotly figure
    """
    # Convert to millions for readability
    wealth_millions = np.asarray(ending_balances, dtype=float) / 1_000_000
    n_bins = min(200, max(20, int(np.sqrt(len(wealth_millions)) * 2)))

    fig = go.Figure()

    fig.add_trace(go.Histogram(
        x=wealth_millions,
        nbinsx=n_bins,
        name="Ending Balance",
        hovertemplate="<b>Balance Range:</b> $%{x:.2f}M<br>" +
                      "<b>Trials:</b> %{y}<br>" +
                      "<extra></extra>",
        marker=dict(
            color='lightblue',
            line=dict(color='darkblue', width=0.5),
            opacity=0.8
        )
    ))

    # Density curve overlay needs spread in the data
    if len(wealth_millions) > 1 and np.var(wealth_millions) > 0:
        try:
            kde = stats.gaussian_kde(wealth_millions)
            x_range = np.linspace(wealth_millions.min(), wealth_millions.max(), 500)
            density = kde(x_range)

            hist_max = np.histogram(wealth_millions, bins=n_bins)[0].max()
            if hist_max > 0 and density.max() > 0:
                fig.add_trace(go.Scatter(
                    x=x_range,
                    y=density * hist_max / density.max() * 0.8,
                    mode='lines',
                    name='Density Curve',
                    line=dict(color='darkred', width=3),
                    hoverinfo='skip'
                ))
        except (ValueError, np.linalg.LinAlgError):
            # Singular covariance, e.g. most trials depleted to zero
            pass

    for perc, color in zip((10, 50, 90), ('red', 'green', 'blue')):
        val = np.percentile(wealth_millions, perc)
        fig.add_vline(
            x=val,
            line_dash="dash",
            line_color=color,
            line_width=2,
            annotation=dict(text=f"P{perc}: ${val:.1f}M", textangle=-90,
                            xanchor="left", yanchor="bottom")
        )

    if np.any(wealth_millions <= 0):
        failure_rate = np.mean(wealth_millions <= 0) * 100
        fig.add_vline(
            x=0,
            line_dash="solid",
            line_color="darkred",
            line_width=3,
            annotation=dict(text=f"Depleted: {failure_rate:.1f}%", xanchor="left",
                            yanchor="middle", bgcolor="white")
        )

    fig.update_layout(
        title=title,
        xaxis_title="Ending Balance ($ Millions)",
        yaxis_title="Number of Trials",
        template="plotly_white",
        showlegend=True,
        height=500
    )

    return fig


def create_wealth_percentile_bands(confidence_intervals: Dict[str, List[float]],
                                   title: str = "Portfolio Balance Percentile Bands") -> go.Figure:
    """
    Create filled area chart showing P10-P90 and P25-P75 balance bands by age.

    Args:
        confidence_intervals: Dictionary with 'ages' and 'p10'..'p90' lists
        title: Chart title

    Returns:
        Plotly figure
    """
    ages = confidence_intervals['ages']
    bands = {key: np.asarray(confidence_intervals[key], dtype=float) / 1_000_000
             for key in ('p10', 'p25', 'p50', 'p75', 'p90')}

    fig = go.Figure()

    for upper, lower, name, fill in (('p90', 'p10', 'P10-P90 Range', 'rgba(173,216,230,0.3)'),
                                     ('p75', 'p25', 'P25-P75 Range', 'rgba(100,149,237,0.35)')):
        fig.add_trace(go.Scatter(
            x=ages, y=bands[upper],
            mode='lines',
            line=dict(color='rgba(0,0,0,0)'),
            showlegend=False,
            hoverinfo='skip'
        ))
        fig.add_trace(go.Scatter(
            x=ages, y=bands[lower],
            fill='tonexty',
            mode='lines',
            line=dict(color='lightblue'),
            name=name,
            fillcolor=fill,
            customdata=np.column_stack([bands[lower], bands[upper]]),
            hovertemplate="<b>Age:</b> %{x}<br>" +
                          "<b>Range:</b> $%{customdata[0]:.1f}M - $%{customdata[1]:.1f}M<br>" +
                          "<extra></extra>"
        ))

    fig.add_trace(go.Scatter(
        x=ages, y=bands['p50'],
        mode='lines',
        line=dict(color='darkblue', width=3),
        name='P50 (Median)',
        hovertemplate="<b>Age:</b> %{x}<br>" +
                      "<b>Median Balance:</b> $%{y:.1f}M<br>" +
                      "<extra></extra>"
    ))

    fig.update_layout(
        title=title,
        xaxis_title="Age",
        yaxis_title="Portfolio Balance ($ Millions)",
        template="plotly_white",
        hovermode="x unified",
        legend=dict(x=0.02, y=0.98)
    )

    return fig


def create_withdrawal_sources_chart(yearly_cash_flows: List[YearlyCashFlow],
                                    title: str = "Withdrawal Sources (Median Trial)") -> go.Figure:
    """Stacked bars of taxable, tax-deferred and tax-free withdrawals with guaranteed income overlaid"""
    df = pd.DataFrame([vars(flow) for flow in yearly_cash_flows])
    fig = go.Figure()
    if df.empty:
        fig.update_layout(title=title, template="plotly_white")
        return fig

    for column, name, color in (('taxable_withdrawal', 'Taxable', '#2ca02c'),
                                ('tax_deferred_withdrawal', 'Tax-Deferred', '#1f77b4'),
                                ('tax_free_withdrawal', 'Tax-Free (Roth)', '#9467bd')):
        fig.add_trace(go.Bar(
            x=df['age'], y=df[column], name=name, marker_color=color,
            hovertemplate=f"<b>{name}:</b> " + "$%{y:,.0f}<extra></extra>"
        ))

    fig.add_trace(go.Scatter(
        x=df['age'], y=df['guaranteed_income'],
        mode='lines', name='Guaranteed Income',
        line=dict(color='orange', width=2, dash='dot')
    ))

    fig.update_layout(
        title=title,
        barmode='stack',
        xaxis_title="Age",
        yaxis_title="Annual Amount ($)",
        template="plotly_white",
        hovermode="x unified"
    )
    return fig


def create_stress_test_chart(report: StressTestReport,
                             title: str = "Stress Test Results") -> go.Figure:
    """Success probability per scenario against the baseline; failed scenarios are omitted"""
    names = ['Baseline']
    values = [report.baseline.probability_of_success]
    colors = ['darkblue']
    for result in report.individual_results:
        if result.failed:
            continue
        names.append(result.name)
        values.append(result.success_probability)
        colors.append('firebrick' if result.impact < 0 else 'seagreen')
    if report.combined is not None:
        names.append('Combined')
        values.append(report.combined.probability_of_success)
        colors.append('black')

    fig = go.Figure(go.Bar(
        x=names, y=values, marker_color=colors,
        text=[f"{v:.0f}%" for v in values], textposition='outside'
    ))
    fig.add_hline(y=80, line_dash="dash", line_color="gray",
                  annotation=dict(text="80% target"))
    fig.update_layout(
        title=title,
        yaxis_title="Probability of Success (%)",
        yaxis=dict(range=[0, 105]),
        template="plotly_white"
    )
    return fig


def create_sensitivity_chart(result: SensitivityResult,
                             title: Optional[str] = None) -> go.Figure:
    """Horizontal bars of isolated variable impacts plus the interaction effect"""
    names = [name for name, impact in result.variable_impacts.items() if impact.expected_impact is not None]
    impacts = [result.variable_impacts[name].expected_impact for name in names]
    names.append('interaction')
    impacts.append(result.interaction_effect)

    fig = go.Figure(go.Bar(
        x=impacts, y=names, orientation='h',
        marker_color=['seagreen' if v >= 0 else 'firebrick' for v in impacts],
        hovertemplate="<b>%{y}:</b> %{x:+.1f} points<extra></extra>"
    ))
    fig.update_layout(
        title=title or (f"Success {result.baseline_success:.0f}% → {result.optimized_success:.0f}% "
                        f"({result.absolute_change:+.1f} points)"),
        xaxis_title="Change in Probability of Success (points)",
        template="plotly_white"
    )
    return fig
