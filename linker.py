from __future__ import annotations  # keep type hints lightweight

import logging

from machine import ArityMismatch, MachineError, SubMachineNotFound, SubMachineOperationNotFound

logger = logging.getLogger(__name__)


class ReentrantCall(MachineError):  # A sub-machine instance was called while already mid-call.
    pass


class OperationTable:  # Closed dispatch table: operation name / operation_id -> Operation.
    def __init__(self, machine):
        self.machine = machine
        self._by_name = {op.name: op for op in machine.operations}
        self._by_id = {op.operation_id: op for op in machine.operations}

    def get(self, name):
        op = self._by_name.get(name)
        if op is None:
            raise SubMachineOperationNotFound(
                f"{self.machine.name} has no operation {name!r}; available: {sorted(self._by_name)}")
        return op

    def by_id(self, operation_id):
        op = self._by_id.get(int(operation_id))
        if op is None:
            raise SubMachineOperationNotFound(f"{self.machine.name} has no operation with id {operation_id}")
        return op

    def __iter__(self): return iter(self._by_name.values())

    def __len__(self): return len(self._by_name)


class Linker:  # Owns a parent's sub-machine executors and forwards linked calls to them.
    def __init__(self, owner, instances):  # instances: sub-machine name -> Executor
        self.owner = owner
        self.instances = dict(instances)
        self.tables = {name: OperationTable(ex.machine) for name, ex in self.instances.items()}
        self._busy = set()
        self.calls = 0

    def call(self, instance, operation, args):  # Synchronous call; returns the callee's outputs.
        ex = self.instances.get(instance)
        if ex is None:
            raise SubMachineNotFound(f"{self.owner} has no sub-machine {instance!r}")
        op = self.tables[instance].get(operation)
        n_in, n_out = ex.machine.operation_arity(op)
        if len(args) != n_in:
            raise ArityMismatch(f"{instance}.{operation} takes {n_in} inputs, got {len(args)}")
        if instance in self._busy:
            raise ReentrantCall(f"{self.owner}: {instance} is already executing a call")
        self._busy.add(instance)
        try:
            outputs = ex.invoke(op, args)
        finally:
            self._busy.discard(instance)
        self.calls += 1
        logger.debug("%s -> %s.%s%s = %s", self.owner, instance, operation, tuple(int(a) for a in args),
                     tuple(int(v) for v in outputs))
        if len(outputs) != n_out:
            raise ArityMismatch(f"{instance}.{operation} returned {len(outputs)} values, expected {n_out}")
        return outputs

    def walk(self):  # Yield (path, executor) for every transitively owned instance.
        for ex in self.instances.values():
            yield ex.path, ex
            if ex.linker is not None:
                yield from ex.linker.walk()
