"""
runner — 命令列入口

    python -m runner --suite flows.login_flows:login_suite --parallelism 2
"""
