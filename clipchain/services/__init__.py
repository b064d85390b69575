"""Services package initialization"""
from .veo_client import VeoClient
from .operation_poller import OperationPoller, extract_video_uri, summarize_statuses
from .media_fetcher import MediaFetcher
from .media_probe import MediaProbe
from .frame_extractor import FrameExtractor
from .clip_chain import ClipChainOrchestrator, ChainPlan, ChainResult, ChainState
from .stitcher import CrossfadeStitcher, StitchResult, Transition
from .audio_sync import AudioSyncer
from .storage import VideoStorage, get_video_storage
from .credit_ledger import CreditLedger, get_credit_ledger
from .video_pipeline import VideoPipeline, get_video_pipeline
from .job_store import JobStore, get_job_store
from .job_queue import JobQueue, get_job_queue

__all__ = [
    "VeoClient",
    "OperationPoller",
    "extract_video_uri",
    "summarize_statuses",
    "MediaFetcher",
    "MediaProbe",
    "FrameExtractor",
    "ClipChainOrchestrator",
    "ChainPlan",
    "ChainResult",
    "ChainState",
    "CrossfadeStitcher",
    "StitchResult",
    "Transition",
    "AudioSyncer",
    "VideoStorage",
    "get_video_storage",
    "CreditLedger",
    "get_credit_ledger",
    "VideoPipeline",
    "get_video_pipeline",
    "JobStore",
    "get_job_store",
    "JobQueue",
    "get_job_queue"
]
