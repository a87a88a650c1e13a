import os
import tempfile

# イベントログはテスト用の一時ディレクトリへ
os.environ.setdefault("BROADSIDE_LOG_DIR", os.path.join(tempfile.gettempdir(), "broadside-test-logs"))
