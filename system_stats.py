"""Host facts shown in the workbench header: CPU, RAM, GPU and gateway liveness."""

import shutil
import subprocess

import psutil

from gateway import probe_gateway

GIB = 1024 ** 3
NVIDIA_QUERY = 'utilization.gpu,memory.used,memory.total,temperature.gpu'


def read_gpu_stats():  # pragma: no cover
    """Query the first NVIDIA GPU via nvidia-smi; unavailable when absent."""
    if shutil.which('nvidia-smi') is None:
        return {'available': False}
    try:
        res = subprocess.run(
            ['nvidia-smi', f'--query-gpu={NVIDIA_QUERY}', '--format=csv,noheader,nounits'],
            capture_output=True,
            text=True,
            timeout=3,
        )
        if res.returncode != 0:
            return {'available': False}
        return parse_gpu_line((res.stdout or '').strip().splitlines()[0])
    except Exception:
        return {'available': False}


def parse_gpu_line(line):
    """Parse one ``usage, mem_used, mem_total, temp`` CSV row from nvidia-smi."""
    try:
        usage, used, total, temp = [float(part.strip()) for part in line.split(',')[:4]]
    except Exception:
        return {'available': False}
    return {
        'available': True,
        'usage': round(usage, 1),
        'memoryUsed': round(used, 1),
        'memoryTotal': round(total, 1),
        'temperature': round(temp, 1),
    }


def read_system_stats(gpu_reader=read_gpu_stats, gateway_prober=probe_gateway):
    """Sample CPU/RAM with psutil and attach GPU and gateway status."""
    memory = psutil.virtual_memory()
    return {
        'cpuPercent': round(psutil.cpu_percent(interval=None), 1),
        'ramUsedGb': round((memory.total - memory.available) / GIB, 2),
        'ramTotalGb': round(memory.total / GIB, 2),
        'gpu': gpu_reader(),
        'gateway': gateway_prober(),
    }
