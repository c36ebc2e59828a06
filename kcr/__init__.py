"""KafkaChannel Dispatcher Reconciler (KCR).

Keeps the runtime footprint of every KafkaChannel in place:
 - a dispatcher Deployment and a metrics Service per channel, created when absent
 - the channel's Service / Dispatcher conditions (and the derived Ready)
 - status fan-out to every channel that uses a kafka secret

Status writes go through a reload-on-conflict loop because the primary channel
controller writes the same status object.
"""
