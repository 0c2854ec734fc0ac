"""Heuristic telegraph analyzer.

Deterministic keyword / regex matching only – no model, no I/O.
Assigns each record a keyword set, industry tags, stock codes, a
sentiment label and a 0.0 – 1.0 confidence, plus short impact and
prediction notes.  Never raises: an internal failure degrades to an
empty neutral analysis.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Iterable, List

from .common_types import Analysis, AnalyzedRecord, NewsRecord

logger = logging.getLogger(__name__)

# ── Vocabularies ────────────────────────────────────────────────

FINANCIAL_KEYWORDS: tuple[str, ...] = (
    "央行", "货币政策", "利率", "降息", "加息", "存款准备金",
    "GDP", "CPI", "PPI", "PMI", "通胀", "通缩",
    "股市", "A股", "港股", "美股", "指数", "涨停", "跌停",
    "IPO", "重组", "并购", "增发", "配股",
    "业绩", "财报", "营收", "利润", "亏损",
    "监管", "政策", "改革", "开放",
    "科技", "芯片", "新能源", "人工智能", "5G",
    "房地产", "地产", "楼市",
    "消费", "零售", "电商",
    "金融", "银行", "保险", "证券",
    "制造", "工业", "基建",
)

INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "科技": ("科技", "互联网", "软件", "芯片", "半导体", "人工智能", "AI", "5G", "云计算"),
    "金融": ("银行", "保险", "证券", "基金", "信托", "金融"),
    "地产": ("房地产", "地产", "楼市", "住宅", "商业地产"),
    "消费": ("消费", "零售", "电商", "商超", "百货"),
    "医药": ("医药", "生物", "制药", "医疗", "器械"),
    "能源": ("能源", "石油", "天然气", "煤炭", "电力"),
    "新能源": ("新能源", "光伏", "风电", "锂电", "电池", "充电桩"),
    "汽车": ("汽车", "车企", "新能源车", "电动车"),
    "制造": ("制造", "工业", "机械", "装备"),
    "基建": ("基建", "建筑", "工程", "铁路", "公路"),
    "农业": ("农业", "种植", "养殖", "农产品"),
    "传媒": ("传媒", "影视", "游戏", "广告"),
}

POSITIVE_WORDS: tuple[str, ...] = (
    "上涨", "增长", "提升", "改善", "利好", "突破", "创新高", "超预期",
    "强劲", "积极", "乐观", "看好", "机会", "受益", "推动", "支持",
)
NEGATIVE_WORDS: tuple[str, ...] = (
    "下跌", "下降", "下滑", "恶化", "利空", "跌破", "创新低", "不及预期",
    "疲软", "悲观", "担忧", "风险", "压力", "冲击", "拖累", "制约",
)

# A-share codes (optionally SH/SZ-prefixed) and 5-digit HK codes, not
# embedded in a longer digit run.  ``\b`` is useless next to CJK text.
A_SHARE_RE = re.compile(r"(?<![0-9A-Za-z])((?:SH|SZ)?[036]\d{5})(?!\d)")
HK_RE = re.compile(r"(?<![0-9A-Za-z])(\d{5})(?!\d)")

SENTIMENT_DESC = {"positive": "利好", "negative": "利空", "neutral": "中性"}

SUMMARY_CONTENT_LEN = 200


def _contains(text_lower: str, word: str) -> bool:
    return word.lower() in text_lower


# ── Individual heuristics ───────────────────────────────────────

def extract_keywords(text: str) -> list[str]:
    low = text.lower()
    return [k for k in FINANCIAL_KEYWORDS if _contains(low, k)]


def identify_industries(text: str) -> list[str]:
    low = text.lower()
    return [
        industry
        for industry, words in INDUSTRY_KEYWORDS.items()
        if any(_contains(low, w) for w in words)
    ]


def identify_stocks(text: str) -> list[str]:
    found = dict.fromkeys(A_SHARE_RE.findall(text))
    for code in HK_RE.findall(text):
        found.setdefault(code)
    return list(found)


def analyze_sentiment(text: str) -> str:
    low = text.lower()
    pos = sum(low.count(w.lower()) for w in POSITIVE_WORDS)
    neg = sum(low.count(w.lower()) for w in NEGATIVE_WORDS)
    if pos > neg:
        return "positive"
    if neg > pos:
        return "negative"
    return "neutral"


def calculate_confidence(keywords: list, industries: list, stocks: list, sentiment: str) -> float:
    confidence = 0.3
    if keywords:
        confidence += 0.2
    if industries:
        confidence += 0.2
    if stocks:
        confidence += 0.15
    if sentiment != "neutral":
        confidence += 0.15
    return round(min(confidence, 1.0), 4)


def build_summary(news: NewsRecord) -> str:
    if not news.content:
        return news.title
    preview = news.content
    if len(preview) > SUMMARY_CONTENT_LEN:
        preview = preview[:SUMMARY_CONTENT_LEN] + "..."
    return f"{news.title} - {preview}"


def describe_impact(text: str, sentiment: str, industries: list, stocks: list) -> str:
    notes: list[str] = []
    if industries:
        notes.append(f"该新闻对{'、'.join(industries)}行业呈{SENTIMENT_DESC[sentiment]}影响")
    if stocks:
        notes.append(f"可能影响股票: {'、'.join(stocks)}")
    if "政策" in text or "监管" in text:
        notes.append("政策面影响较大，需关注后续政策落地情况")
    if "业绩" in text or "财报" in text:
        notes.append("业绩相关消息，可能影响相关公司估值")
    if "央行" in text or "货币政策" in text:
        notes.append("宏观政策影响，可能波及整体市场")
    return "；".join(notes) if notes else "影响程度有限，建议持续关注"


def build_prediction(sentiment: str, industries: list, confidence: float) -> str:
    notes: list[str] = []
    sectors = "、".join(industries)
    if sentiment == "positive":
        if industries:
            notes.append(f"建议关注{sectors}板块的投资机会")
        notes.append("短期内相关标的可能有上涨动能")
    elif sentiment == "negative":
        notes.append("建议谨慎对待相关板块，注意风险控制")
        if industries:
            notes.append(f"{sectors}板块可能面临压力")
    else:
        notes.append("建议保持观望，等待更多信息")
        notes.append("可适当关注后续发展")
    if confidence < 0.5:
        notes.append("注意：分析置信度较低，建议结合更多信息综合判断")
    return "；".join(notes)


# ── Analyzer ────────────────────────────────────────────────────

class NewsAnalyzer:
    """Stateless; safe to share across threads."""

    def analyze(self, news: NewsRecord) -> Analysis:
        try:
            return self._analyze(news)
        except Exception as exc:
            logger.warning("Analysis failed for %s: %s", news.news_id, exc)
            return Analysis(news_id=news.news_id, summary=news.title, analyzed_at=time.time())

    def _analyze(self, news: NewsRecord) -> Analysis:
        text = f"{news.title} {news.content}"
        keywords = extract_keywords(text)
        industries = identify_industries(text)
        stocks = identify_stocks(text)
        sentiment = analyze_sentiment(text)
        confidence = calculate_confidence(keywords, industries, stocks, sentiment)
        analysis = Analysis(
            news_id=news.news_id,
            summary=build_summary(news),
            sentiment=sentiment,
            keywords=tuple(keywords),
            industries=tuple(industries),
            stocks=tuple(stocks),
            impact=describe_impact(text, sentiment, industries, stocks),
            prediction=build_prediction(sentiment, industries, confidence),
            confidence=confidence,
            analyzed_at=time.time(),
        )
        logger.debug(
            "Analyzed %s: sentiment=%s confidence=%.2f", news.news_id, sentiment, confidence,
        )
        return analysis

    def batch_analyze(self, records: Iterable[NewsRecord]) -> List[AnalyzedRecord]:
        return [AnalyzedRecord(news=r, analysis=self.analyze(r)) for r in records]
