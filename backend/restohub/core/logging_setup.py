import logging
import sys
from pathlib import Path

from restohub.core.config import settings

_log_dir = Path(settings.log_dir)
_log_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(_log_dir / 'server.log', encoding='utf-8'),
    ]
)

logger = logging.getLogger('restohub')
