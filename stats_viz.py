"""Static chart rendering for a statistics snapshot."""

from __future__ import annotations

import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from analyzer import StatisticsSnapshot


def daily_frame(snapshot: StatisticsSnapshot) -> pd.DataFrame:
    """Build a per-day frame over the full active span.

    Days without activity are zero-filled so rolling averages span real
    calendar time.  Columns: messages, chats, duration_minutes,
    messages_7_day_avg, duration_7_day_avg.  Indexed by date.
    """
    columns = ["messages", "chats", "duration_minutes"]
    days = sorted(set(snapshot.daily_activity) | set(snapshot.daily_duration))
    if not days:
        return pd.DataFrame(
            columns=columns + ["messages_7_day_avg", "duration_7_day_avg"],
            index=pd.DatetimeIndex([], name="date"),
        )

    df = pd.DataFrame(
        {
            "messages": pd.Series(snapshot.daily_activity, dtype="int64"),
            "chats": pd.Series(snapshot.daily_file_counts, dtype="int64"),
            "duration_minutes": pd.Series(snapshot.daily_duration, dtype="int64"),
        },
        index=days,
    )
    df.index = pd.to_datetime(df.index)
    full_index = pd.date_range(df.index.min(), df.index.max(), freq="D", name="date")
    df = df.reindex(full_index).fillna(0).astype("int64")

    df["messages_7_day_avg"] = df["messages"].rolling(window=7, min_periods=1).mean()
    df["duration_7_day_avg"] = df["duration_minutes"].rolling(window=7, min_periods=1).mean()
    return df


def plot_daily_activity(df: pd.DataFrame, path: str) -> None:
    plt.figure(figsize=(15, 8))
    plt.bar(df.index, df["messages"], alpha=0.5, color="skyblue", label="Daily Messages")
    plt.plot(df.index, df["messages_7_day_avg"], color="red", linewidth=2, label="7-day Average")
    plt.title("Daily Messages", fontsize=14, pad=20)
    plt.xlabel("Date", fontsize=12)
    plt.ylabel("Messages", fontsize=12)
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.xticks(rotation=45)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def plot_daily_duration(df: pd.DataFrame, path: str) -> None:
    plt.figure(figsize=(15, 8))
    plt.bar(df.index, df["duration_minutes"], alpha=0.5, color="lightgreen", label="Estimated Minutes")
    plt.plot(df.index, df["duration_7_day_avg"], color="blue", linewidth=2, label="7-day Average")
    plt.title("Estimated Daily Chat Time", fontsize=14, pad=20)
    plt.xlabel("Date", fontsize=12)
    plt.ylabel("Minutes", fontsize=12)
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.xticks(rotation=45)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def plot_hourly_activity(snapshot: StatisticsSnapshot, path: str) -> None:
    hourly = pd.DataFrame({"hour": range(24), "messages": snapshot.hourly_activity})
    plt.figure(figsize=(12, 6))
    sns.barplot(data=hourly, x="hour", y="messages", color="mediumpurple")
    plt.title("Messages by Hour of Day", fontsize=14, pad=20)
    plt.xlabel("Hour", fontsize=12)
    plt.ylabel("Messages", fontsize=12)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def plot_model_usage(snapshot: StatisticsSnapshot, path: str, top: int = 10) -> None:
    usage = (
        pd.Series(snapshot.models, dtype="int64")
        .sort_values(ascending=False)
        .head(top)
        .rename_axis("model")
        .reset_index(name="messages")
    )
    plt.figure(figsize=(12, 6))
    sns.barplot(data=usage, x="messages", y="model", color="lightcoral")
    plt.title("Replies by Model", fontsize=14, pad=20)
    plt.xlabel("Messages", fontsize=12)
    plt.ylabel("")
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def plot_character_usage(snapshot: StatisticsSnapshot, path: str, top: int = 10) -> None:
    usage = (
        pd.Series(snapshot.character_stats, dtype="int64")
        .sort_values(ascending=False)
        .head(top)
        .rename_axis("character")
        .reset_index(name="messages")
    )
    plt.figure(figsize=(12, 6))
    sns.barplot(data=usage, x="messages", y="character", color="mediumseagreen")
    plt.title("Messages by Character", fontsize=14, pad=20)
    plt.xlabel("Messages", fontsize=12)
    plt.ylabel("")
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def save_charts(snapshot: StatisticsSnapshot, output_dir: str = "chat_stats") -> list[str]:
    """Render every chart that has data into *output_dir*.

    Returns:
        Paths of the PNG files written.
    """
    os.makedirs(output_dir, exist_ok=True)
    written: list[str] = []

    df = daily_frame(snapshot)
    if not df.empty:
        path = os.path.join(output_dir, "daily_activity.png")
        plot_daily_activity(df, path)
        written.append(path)
        path = os.path.join(output_dir, "daily_duration.png")
        plot_daily_duration(df, path)
        written.append(path)

    if any(snapshot.hourly_activity):
        path = os.path.join(output_dir, "hourly_activity.png")
        plot_hourly_activity(snapshot, path)
        written.append(path)

    if snapshot.models:
        path = os.path.join(output_dir, "model_usage.png")
        plot_model_usage(snapshot, path)
        written.append(path)

    if snapshot.character_stats:
        path = os.path.join(output_dir, "character_usage.png")
        plot_character_usage(snapshot, path)
        written.append(path)

    return written
