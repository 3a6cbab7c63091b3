"""rscript-runner 入口点。

支持: python -m rscript_runner
"""

from .app import main

if __name__ == "__main__":
    main()
