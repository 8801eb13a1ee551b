#!/usr/bin/env python3
"""
Jupiter Perps Analytics Dashboard

Plots the snapshot rows appended by perps_analytics.py over time.

Usage:
    streamlit run streamlit_app.py
"""

import os

import streamlit as st
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from dotenv import load_dotenv

from perps_report import format_leverage, load_log

load_dotenv()

CSV_PATH = os.environ.get("PERPS_CSV_PATH", "data/perps_analytics.csv")

st.set_page_config(
    page_title="Jupiter Perps Analytics",
    page_icon="📊",
    layout="wide",
)

st.markdown("""
<style>
    .stApp { background-color: #0e0e1a !important; }
    [data-testid="stHeader"] { background-color: #0e0e1a !important; }
    h1 { color: #9945FF !important; font-size: 1.8rem !important; font-weight: 600 !important; }
    h2 { color: #c4b5fd !important; font-size: 1.3rem !important; font-weight: 500 !important; }
    [data-testid="stMetricValue"] { color: #f0f0f0 !important; font-size: 1.6rem !important; }
    [data-testid="stMetricLabel"] { color: #9ca3af !important; font-size: 0.85rem !important; }
    .block-container { padding: 1rem 2rem !important; max-width: 1400px !important; }
</style>
""", unsafe_allow_html=True)


def format_volume(value):
    """Format large numbers with B/M suffix."""
    if value >= 1e9:
        return f"${value/1e9:.2f}B"
    elif value >= 1e6:
        return f"${value/1e6:.1f}M"
    elif value >= 1e3:
        return f"${value/1e3:.0f}K"
    return f"${value:,.0f}"


def pct_delta(latest, previous):
    if previous is None or previous == 0:
        return None
    return f"{((latest - previous) / abs(previous) * 100):+.1f}%"


def line_chart(df, columns, title, colors, tickformat="$,.0s"):
    fig = go.Figure()
    for column, color in zip(columns, colors):
        fig.add_trace(
            go.Scatter(
                x=df["Time"],
                y=df[column],
                mode="lines+markers",
                name=column,
                line=dict(color=color, width=2),
                marker=dict(size=4),
            )
        )
    fig.update_layout(
        title=title,
        height=300,
        margin=dict(t=40, b=40, l=60, r=60),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="center", x=0.5),
        paper_bgcolor='rgba(0,0,0,0)',
        plot_bgcolor='rgba(0,0,0,0)',
        font=dict(color='#c9d1d9'),
    )
    fig.update_xaxes(gridcolor='#1e2330', zerolinecolor='#1e2330')
    fig.update_yaxes(tickformat=tickformat, gridcolor='#1e2330')
    return fig


st.title("Jupiter Perps Analytics")

df = load_log(CSV_PATH)
if df.empty:
    st.info(f"No snapshots in {CSV_PATH} yet. Run: python perps_analytics.py -r <RPC_URL> -c {CSV_PATH}")
    st.stop()

latest = df.iloc[-1]
previous = df.iloc[-2] if len(df) >= 2 else None
st.caption(f"Latest snapshot {latest['Time']:%Y-%m-%d %H:%M} UTC · {len(df):,} snapshots")


def prev(column):
    return previous[column] if previous is not None else None


st.header("Overview")
cols = st.columns(4)
with cols[0]:
    st.metric("Pool Value", format_volume(latest["Total Pool Value"]),
              delta=pct_delta(latest["Total Pool Value"], prev("Total Pool Value")))
with cols[1]:
    st.metric("Unrealized P&L", f"${latest['Unrealized Paper P&L']:,.0f}")
with cols[2]:
    st.metric("Fees", format_volume(latest["Total Fees"]),
              delta=pct_delta(latest["Total Fees"], prev("Total Fees")))
with cols[3]:
    st.metric("Positions", format_volume(latest["Total Value of Positions"]),
              delta=pct_delta(latest["Total Value of Positions"], prev("Total Value of Positions")))

cols = st.columns(4)
with cols[0]:
    st.metric("Leverage at Entry", format_leverage(latest["Average Leverage At Entry"]))
with cols[1]:
    st.metric("Effective Leverage", format_leverage(latest["Average Effective Leverage"]))
with cols[2]:
    st.metric("Long Trades", f"{int(latest['Long Trades']):,}", format_volume(latest["Long Value"]))
with cols[3]:
    st.metric("Short Trades", f"{int(latest['Short Trades']):,}", format_volume(latest["Short Value"]))

st.divider()

if len(df) >= 2:
    st.plotly_chart(
        line_chart(df, ["Total Pool Value", "Total Value of Positions", "Total Value of Collateral"],
                   "Pool & Open Interest", ["#9945FF", "#c4b5fd", "#14F195"]),
        use_container_width=True,
    )
    st.plotly_chart(
        line_chart(df, ["Unrealized Paper P&L", "Total Fees"], "Traders P&L vs Fees", ["#14F195", "#f85149"]),
        use_container_width=True,
    )
    st.plotly_chart(
        line_chart(df, ["Average Leverage At Entry", "Average Effective Leverage"], "Average Leverage",
                   ["#9945FF", "#c4b5fd"], tickformat=".2f"),
        use_container_width=True,
    )

    fig = make_subplots(specs=[[{"secondary_y": True}]])
    fig.add_trace(go.Scatter(x=df["Time"], y=df["Long Value"], name="Long Value",
                             line=dict(color="#14F195", width=2)), secondary_y=False)
    fig.add_trace(go.Scatter(x=df["Time"], y=df["Short Value"], name="Short Value",
                             line=dict(color="#f85149", width=2)), secondary_y=False)
    fig.add_trace(go.Scatter(x=df["Time"], y=df["Long Trades"] + df["Short Trades"], name="Open Trades",
                             line=dict(color="#9ca3af", width=1, dash="dot")), secondary_y=True)
    fig.update_layout(
        title="Long / Short",
        height=300,
        margin=dict(t=40, b=40, l=60, r=60),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="center", x=0.5),
        paper_bgcolor='rgba(0,0,0,0)',
        plot_bgcolor='rgba(0,0,0,0)',
        font=dict(color='#c9d1d9'),
    )
    fig.update_yaxes(title_text="USD", tickformat="$,.0s", gridcolor='#1e2330', secondary_y=False)
    fig.update_yaxes(title_text="Trades", gridcolor='#1e2330', secondary_y=True)
    st.plotly_chart(fig, use_container_width=True)
else:
    st.info("Trends appear once there are at least two snapshots")

with st.expander("Raw snapshots"):
    st.dataframe(df.drop(columns=["Time"]), hide_index=True, use_container_width=True)

st.divider()
st.caption(f"Data: Jupiter Perps on-chain accounts · Pyth oracles · {CSV_PATH}")
